"""
Booking notification hand-off.

The engine builds a payload once a transition has been committed and hands
it to a Notifier. How the message is templated and delivered (email, chat)
belongs to whoever implements the Notifier; the default one only logs.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import date
from typing import Optional

from reservations.core.config import get_settings
from reservations.core.logging import get_logger

logger = get_logger(__name__)

BOOKING_CREATED = "booking_created"
BOOKING_CONFIRMED = "booking_confirmed"
BOOKING_COMPLETED = "booking_completed"


@dataclass(frozen=True)
class BookingNotification:
    kind: str
    booking_id: int
    user_email: str
    user_name: str
    listing_name: str
    start_date: date
    end_date: date
    guests: int
    units: int
    status: str


class Notifier(ABC):
    """Receives committed booking transitions."""

    @abstractmethod
    async def notify(self, notification: BookingNotification) -> None:
        pass


class LoggingNotifier(Notifier):
    async def notify(self, notification: BookingNotification) -> None:
        payload = asdict(notification)
        payload["start_date"] = str(notification.start_date)
        payload["end_date"] = str(notification.end_date)
        logger.info("notification_dispatched", **payload)


class NullNotifier(Notifier):
    async def notify(self, notification: BookingNotification) -> None:
        pass


class RecordingNotifier(Notifier):
    """Keeps every notification in memory. Used by tests and local tooling."""

    def __init__(self):
        self.sent: list[BookingNotification] = []

    async def notify(self, notification: BookingNotification) -> None:
        self.sent.append(notification)

    def kinds(self) -> list[str]:
        return [n.kind for n in self.sent]


def build_notifier(name: Optional[str] = None) -> Notifier:
    """
    Notifier selected by the NOTIFIER setting:
    - "log": LoggingNotifier (default)
    - "none": NullNotifier
    """
    name = name or get_settings().NOTIFIER
    if name == "none":
        return NullNotifier()
    return LoggingNotifier()


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = build_notifier()
    return _notifier
