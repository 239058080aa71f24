"""
Explicit per-call context for engine operations.

Every state-changing operation receives the acting identity and the booking
policy as arguments instead of reading them from module-level state, so one
request can never observe another request's permissions or configuration.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from reservations.core.config import Settings, get_settings

ROLE_ADMIN = "admin"
ROLE_STAFF = "staff"
ROLE_GUEST = "guest"
STAFF_ROLES = frozenset({ROLE_ADMIN, ROLE_STAFF})


@dataclass(frozen=True)
class Actor:
    id: int | None
    name: str
    role: str = ROLE_GUEST

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


SYSTEM_ACTOR = Actor(id=None, name="System", role=ROLE_ADMIN)


@dataclass(frozen=True)
class BookingPolicy:
    require_deposit_to_confirm: bool = True
    require_zero_balance_to_complete: bool = True
    event_daily_hours: int = 12
    max_discount_percent: Decimal = Decimal("15")
    max_retry_attempts: int = 3

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "BookingPolicy":
        settings = settings or get_settings()
        return cls(
            require_deposit_to_confirm=settings.REQUIRE_DEPOSIT_TO_CONFIRM,
            require_zero_balance_to_complete=settings.REQUIRE_ZERO_BALANCE_TO_COMPLETE,
            event_daily_hours=settings.EVENT_BOOKING_DAILY_HOURS,
            max_discount_percent=settings.MAX_DISCOUNT_PERCENT,
            max_retry_attempts=settings.MAX_RETRY_ATTEMPTS,
        )


@dataclass(frozen=True)
class OperationContext:
    actor: Actor
    policy: BookingPolicy = field(default_factory=BookingPolicy)
