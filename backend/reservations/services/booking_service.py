"""
Booking lifecycle with commit-time inventory re-checks.

LIFECYCLE
=========

    Pending --confirm--> Confirmed --complete--> Completed
       |                     |
       +------cancel---------+-----> Cancelled

Completed and Cancelled are terminal.

Availability is computed optimistically and enforced at confirmation:
Pending bookings never block anyone, so two Pending bookings may be handed
the same unit. Confirm re-runs the availability check (ignoring the booking
itself); if another booking was confirmed onto one of our units in the
meantime, the booking is cancelled by the System actor and the caller gets
InventoryConflict.

UNIT OF WORK
============

Each operation:
  1. reads the booking and (for allocation changes) the listing row,
  2. validates everything and raises DomainError on the first problem,
  3. mutates status, units and history together,
  4. bumps the listing version when held units change (see allocation.py),
  5. commits once.

A failure at any step before the commit rolls the session back, so nothing
is ever half-applied. Operations return OperationResult and never raise
domain errors to the caller.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reservations.core.logging import get_logger
from reservations.core.metrics import record_transition
from reservations.models.booking import (
    ACTIVE_STATUSES,
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    PENDING,
    TERMINAL_STATUSES,
    Booking,
)
from reservations.models.listing import Listing
from reservations.models.user import User
from reservations.schemas.records import ActionEntry, ActionKind, Bill, Payment
from reservations.services import ledger
from reservations.services.allocation import claim_listing_version, load_listing_for_update, run_operation
from reservations.services.availability import find_available_units, select_units, validate_range
from reservations.services.context import SYSTEM_ACTOR, Actor, OperationContext
from reservations.services.errors import (
    DomainError,
    ErrorKind,
    InsufficientInventory,
    InvalidTransition,
    NotFound,
    OperationResult,
    ValidationFailed,
)
from reservations.services.notifications import (
    BOOKING_COMPLETED,
    BOOKING_CONFIRMED,
    BOOKING_CREATED,
    BookingNotification,
    Notifier,
    get_notifier,
)
from reservations.services.user_service import get_user, resolve_guest_user

logger = get_logger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


async def _execute(
    db: AsyncSession,
    operation: str,
    ctx: OperationContext,
    work: Callable[[], Awaitable[T]],
) -> OperationResult[T]:
    return await run_operation(db, operation, work, ctx.policy.max_retry_attempts)


async def _load_booking(db: AsyncSession, booking_id: int) -> Booking:
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFound("Booking", booking_id)
    return booking


async def _load_listing(db: AsyncSession, listing_id: int) -> Listing:
    listing = await db.get(Listing, listing_id)
    if listing is None:
        raise NotFound("Listing", listing_id)
    return listing


def _record(booking: Booking, actor: Actor, action: ActionKind, message: str) -> None:
    entry = ActionEntry(actor_id=actor.id, actor_name=actor.name, action=action, message=message)
    # Reassign: JSON columns only notice a new list
    booking.actions = [*(booking.actions or []), entry]
    if action in (
        ActionKind.CREATED,
        ActionKind.UPDATED,
        ActionKind.CONFIRMED,
        ActionKind.COMPLETED,
        ActionKind.CANCELLED,
        ActionKind.SYSTEM,
    ):
        booking.status_message = message


def _stamp(actor: Actor) -> str:
    return f"{actor.name} on {date.today().isoformat()}"


def _to_amount(value, field: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationFailed(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationFailed(f"{field} must be a number")
    return amount


async def _notify(
    db: AsyncSession,
    notifier: Optional[Notifier],
    kind: str,
    booking: Booking,
    listing: Listing,
) -> None:
    """Hand off a committed transition. Delivery problems never undo the commit."""
    notifier = notifier or get_notifier()
    try:
        user = await db.get(User, booking.user_id)
        await notifier.notify(
            BookingNotification(
                kind=kind,
                booking_id=booking.id,
                user_email=user.email if user else "",
                user_name=user.name if user else "",
                listing_name=listing.name,
                start_date=booking.start_date,
                end_date=booking.end_date,
                guests=booking.guests,
                units=booking.unit_count,
                status=booking.status,
            )
        )
    except Exception as e:
        logger.error("notification_failed", booking_id=booking.id, kind=kind, error=str(e))


async def _resolve_owner(
    db: AsyncSession,
    actor: Actor,
    user_id: Optional[int],
    guest_email: Optional[str],
    guest_name: str,
) -> User:
    if user_id is not None:
        return await get_user(db, user_id)
    if guest_email:
        return await resolve_guest_user(db, guest_email, guest_name)
    if actor.id is not None:
        return await get_user(db, actor.id)
    raise ValidationFailed("A user or a guest email is required to book")


def _check_capacity(listing: Listing, guests: int, unit_count: int) -> None:
    if guests < 1:
        raise ValidationFailed("Guest count must be at least 1")
    if unit_count < 1:
        raise ValidationFailed("Number of units must be at least 1")
    capacity = listing.max_guests * unit_count
    if guests > capacity:
        raise ValidationFailed(
            f"{guests} guests exceed the capacity of {unit_count} unit(s) "
            f"({listing.max_guests} per unit)",
            capacity=capacity,
        )


# ---------------------------------------------------------------------------
# create / update
# ---------------------------------------------------------------------------


async def create_booking(
    db: AsyncSession,
    ctx: OperationContext,
    listing_id: int,
    start_date: date,
    end_date: date,
    guests: int,
    num_units: int = 1,
    user_id: Optional[int] = None,
    guest_email: Optional[str] = None,
    guest_name: str = "",
    notifier: Optional[Notifier] = None,
) -> OperationResult[Booking]:
    """
    Create a Pending booking holding the first `num_units` free units.
    Fails with InsufficientInventory (reporting the available count) when
    the listing cannot supply enough units for the range.
    """

    async def attempt() -> tuple[Booking, Listing]:
        validate_range(start_date, end_date)
        if num_units < 1:
            raise ValidationFailed("Number of units must be at least 1")

        listing = await load_listing_for_update(db, listing_id)
        _check_capacity(listing, guests, num_units)

        available = await find_available_units(db, listing.id, start_date, end_date)
        if len(available) < num_units:
            raise InsufficientInventory(requested=num_units, available=len(available))

        owner = await _resolve_owner(db, ctx.actor, user_id, guest_email, guest_name)
        actor = ctx.actor if ctx.actor.id is not None else Actor(owner.id, owner.name, ctx.actor.role)

        booking = Booking(
            listing_id=listing.id,
            user_id=owner.id,
            start_date=start_date,
            end_date=end_date,
            guests=guests,
            inventory_ids=select_units(available, num_units),
            status=PENDING,
            discount=Decimal("0"),
            actions=[],
            bills=[],
            payments=[],
        )
        _record(booking, actor, ActionKind.CREATED, f"Booking created by {_stamp(actor)}")
        db.add(booking)
        await db.flush()

        await claim_listing_version(db, listing)
        await db.commit()
        return booking, listing

    result = await _execute(db, "create_booking", ctx, attempt)
    if not result.ok:
        return OperationResult.failure(result.error)

    booking, listing = result.value
    record_transition("created")
    logger.info(
        "booking_created",
        booking_id=booking.id,
        listing_id=listing.id,
        user_id=booking.user_id,
        units=booking.inventory_ids,
        start_date=str(booking.start_date),
        end_date=str(booking.end_date),
    )
    await _notify(db, notifier, BOOKING_CREATED, booking, listing)
    return OperationResult.success(booking)


async def update_booking(
    db: AsyncSession,
    ctx: OperationContext,
    booking_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    guests: Optional[int] = None,
    num_units: Optional[int] = None,
    inventory_ids: Optional[Sequence[int]] = None,
) -> OperationResult[Booking]:
    """
    Change dates, guests, unit count or the exact units of a booking.

    A Confirmed booking whose dates or units change must still fit: it is
    checked against availability excluding itself, then drops back to
    Pending and has to be confirmed again. A Pending booking is changed
    directly; free units are preferred but busy ones are accepted, since
    confirm re-checks them. On failure the booking is left untouched.
    """

    async def attempt() -> Booking:
        booking = await _load_booking(db, booking_id)
        if booking.status in TERMINAL_STATUSES:
            raise InvalidTransition("update", booking.status)

        listing = await load_listing_for_update(db, booking.listing_id)

        new_start = start_date or booking.start_date
        new_end = end_date or booking.end_date
        validate_range(new_start, new_end)
        new_guests = guests if guests is not None else booking.guests

        requested: Optional[list[int]] = None
        if inventory_ids is not None:
            requested = list(dict.fromkeys(inventory_ids))
            if not requested:
                raise ValidationFailed("At least one unit must be selected")
            if num_units is not None and num_units != len(requested):
                raise ValidationFailed(
                    f"Number of units ({num_units}) does not match the {len(requested)} selected unit(s)"
                )
            new_count = len(requested)
        else:
            new_count = num_units if num_units is not None else booking.unit_count

        _check_capacity(listing, new_guests, new_count)

        dates_changed = (new_start, new_end) != (booking.start_date, booking.end_date)
        units_changed = new_count != booking.unit_count or (
            requested is not None and requested != list(booking.inventory_ids)
        )
        material = dates_changed or units_changed

        was_confirmed = booking.status == CONFIRMED
        new_ids = list(booking.inventory_ids)
        if material:
            listing_ids = [unit.id for unit in listing.units]
            available = await find_available_units(
                db, listing.id, new_start, new_end, exclude_booking_id=booking.id
            )
            available_ids = {unit.id for unit in available}

            if requested is not None:
                unknown = [i for i in requested if i not in listing_ids]
                if unknown:
                    raise ValidationFailed(
                        f"Units {unknown} do not belong to listing {listing.id}", units=unknown
                    )
                taken = [i for i in requested if i not in available_ids]
                if taken and was_confirmed:
                    raise DomainError(
                        ErrorKind.INSUFFICIENT_INVENTORY,
                        f"Units {taken} are not available for the selected dates. "
                        f"Available: {len(available)}",
                        requested=new_count,
                        available=len(available),
                    )
                new_ids = requested
            else:
                # Held units that are still free first, then free units in order
                candidates = [i for i in booking.inventory_ids if i in available_ids]
                candidates += [i for i in select_units(available, len(available)) if i not in candidates]
                if not was_confirmed:
                    # Pending holds are provisional; busy units are caught by the confirm re-check
                    candidates += [i for i in booking.inventory_ids if i in listing_ids and i not in candidates]
                    candidates += [i for i in listing_ids if i not in candidates]
                if len(candidates) < new_count:
                    raise InsufficientInventory(requested=new_count, available=len(candidates))
                new_ids = candidates[:new_count]

        booking.start_date = new_start
        booking.end_date = new_end
        booking.guests = new_guests
        booking.inventory_ids = new_ids

        if was_confirmed and material:
            booking.status = PENDING
            message = (
                f"Booking was modified by {_stamp(ctx.actor)}; "
                f"it must be confirmed again"
            )
        else:
            message = f"Booking updated by {_stamp(ctx.actor)}"
        _record(booking, ctx.actor, ActionKind.UPDATED, message)

        if material:
            await claim_listing_version(db, listing)
        await db.commit()

        logger.info(
            "booking_updated",
            booking_id=booking.id,
            status=booking.status,
            dates_changed=dates_changed,
            units_changed=units_changed,
            units=booking.inventory_ids,
        )
        return booking

    result = await _execute(db, "update_booking", ctx, attempt)
    if result.ok:
        record_transition("updated")
    return result


async def change_booking_owner(
    db: AsyncSession,
    ctx: OperationContext,
    booking_id: int,
    new_user_id: int,
) -> OperationResult[Booking]:
    """Move a booking to another user. Inventory is not touched."""

    async def attempt() -> Booking:
        booking = await _load_booking(db, booking_id)
        new_owner = await get_user(db, new_user_id)
        if booking.user_id == new_owner.id:
            raise ValidationFailed(f"Booking {booking.id} already belongs to user {new_owner.id}")

        previous = booking.user_id
        booking.user_id = new_owner.id
        _record(
            booking,
            ctx.actor,
            ActionKind.OWNER_CHANGED,
            f"Owner changed from user {previous} to {new_owner.name} by {_stamp(ctx.actor)}",
        )
        await db.commit()
        logger.info("booking_owner_changed", booking_id=booking.id, previous=previous, new=new_owner.id)
        return booking

    return await _execute(db, "change_booking_owner", ctx, attempt)


# ---------------------------------------------------------------------------
# transitions
# ---------------------------------------------------------------------------


async def confirm_booking(
    db: AsyncSession,
    ctx: OperationContext,
    booking_id: int,
    notifier: Optional[Notifier] = None,
) -> OperationResult[Booking]:
    """
    Pending -> Confirmed, after the deposit gate and a final availability
    re-check. If any held unit was taken by another Confirmed booking, the
    booking is cancelled by the System and InventoryConflict is returned
    together with the cancelled booking.
    """

    async def attempt() -> tuple[Booking, Listing]:
        booking = await _load_booking(db, booking_id)
        if booking.status != PENDING:
            raise InvalidTransition("confirm", booking.status)

        listing = await load_listing_for_update(db, booking.listing_id)

        if ctx.policy.require_deposit_to_confirm:
            deposit = ledger.deposit_required(booking, listing)
            paid = ledger.total_payments(booking)
            if paid < deposit:
                raise DomainError(
                    ErrorKind.DEPOSIT_REQUIRED,
                    f"A deposit of at least {deposit} {listing.currency} is required to confirm. "
                    f"Paid so far: {paid}",
                    deposit=deposit,
                    paid=paid,
                )

        available = await find_available_units(
            db, listing.id, booking.start_date, booking.end_date, exclude_booking_id=booking.id
        )
        available_ids = {unit.id for unit in available}
        lost = [i for i in booking.inventory_ids if i not in available_ids]

        if lost:
            booking.status = CANCELLED
            _record(
                booking,
                SYSTEM_ACTOR,
                ActionKind.SYSTEM,
                f"Automatically cancelled: units {lost} are no longer available "
                f"for {booking.start_date} to {booking.end_date}",
            )
            await db.commit()
            record_transition("system_cancelled")
            logger.warning(
                "booking_auto_cancelled",
                booking_id=booking.id,
                listing_id=listing.id,
                lost_units=lost,
            )
            raise DomainError(
                ErrorKind.INVENTORY_CONFLICT,
                f"Units {lost} are no longer available for the selected dates. "
                f"The booking has been cancelled.",
                booking=booking,
                units=lost,
            )

        booking.status = CONFIRMED
        _record(booking, ctx.actor, ActionKind.CONFIRMED, f"Booking confirmed by {_stamp(ctx.actor)}")
        await claim_listing_version(db, listing)
        await db.commit()
        return booking, listing

    result = await _execute(db, "confirm_booking", ctx, attempt)
    if not result.ok:
        return result

    booking, listing = result.value
    record_transition("confirmed")
    logger.info("booking_confirmed", booking_id=booking.id, units=booking.inventory_ids)
    await _notify(db, notifier, BOOKING_CONFIRMED, booking, listing)
    return OperationResult.success(booking)


async def complete_booking(
    db: AsyncSession,
    ctx: OperationContext,
    booking_id: int,
    notifier: Optional[Notifier] = None,
) -> OperationResult[Booking]:
    async def attempt() -> tuple[Booking, Listing]:
        booking = await _load_booking(db, booking_id)
        if booking.status != CONFIRMED:
            raise InvalidTransition("complete", booking.status)

        listing = await _load_listing(db, booking.listing_id)
        if ctx.policy.require_zero_balance_to_complete:
            summary = ledger.compute_balance(booking, listing, ctx.policy.event_daily_hours)
            if summary.balance > 0:
                raise DomainError(
                    ErrorKind.OUTSTANDING_BALANCE,
                    f"An outstanding balance of {summary.balance} {listing.currency} "
                    f"must be paid before completing",
                    balance=summary.balance,
                )

        booking.status = COMPLETED
        _record(booking, ctx.actor, ActionKind.COMPLETED, f"Booking completed by {_stamp(ctx.actor)}")
        await db.commit()
        return booking, listing

    result = await _execute(db, "complete_booking", ctx, attempt)
    if not result.ok:
        return result

    booking, listing = result.value
    record_transition("completed")
    logger.info("booking_completed", booking_id=booking.id)
    await _notify(db, notifier, BOOKING_COMPLETED, booking, listing)
    return OperationResult.success(booking)


async def cancel_booking(
    db: AsyncSession,
    ctx: OperationContext,
    booking_id: int,
    reason: str = "",
) -> OperationResult[Booking]:
    async def attempt() -> Booking:
        booking = await _load_booking(db, booking_id)
        if booking.status not in ACTIVE_STATUSES:
            raise InvalidTransition("cancel", booking.status)

        previous = booking.status
        booking.status = CANCELLED
        message = f"Booking cancelled by {_stamp(ctx.actor)}"
        if reason:
            message = f"{message}: {reason}"
        _record(booking, ctx.actor, ActionKind.CANCELLED, message)
        await db.commit()

        logger.info(
            "booking_cancelled",
            booking_id=booking.id,
            previous_status=previous,
            units_released=booking.inventory_ids if previous == CONFIRMED else [],
        )
        return booking

    result = await _execute(db, "cancel_booking", ctx, attempt)
    if result.ok:
        record_transition("cancelled")
    return result


# ---------------------------------------------------------------------------
# money
# ---------------------------------------------------------------------------


async def add_bill(
    db: AsyncSession,
    ctx: OperationContext,
    booking_id: int,
    description: str,
    amount,
) -> OperationResult[Booking]:
    async def attempt() -> Booking:
        value = _to_amount(amount, "Bill amount")
        if value <= 0:
            raise ValidationFailed("Bill amount must be positive")
        if not description or not description.strip():
            raise ValidationFailed("Bill description is required")

        booking = await _load_booking(db, booking_id)
        bill = Bill(
            description=description.strip(),
            amount=value,
            actor_id=ctx.actor.id,
            actor_name=ctx.actor.name,
        )
        booking.bills = [*(booking.bills or []), bill]
        _record(booking, ctx.actor, ActionKind.BILL_ADDED, f"Bill '{bill.description}' of {value} added")
        await db.commit()
        logger.info("bill_added", booking_id=booking.id, bill_id=bill.id, amount=str(value))
        return booking

    return await _execute(db, "add_bill", ctx, attempt)


async def add_payment(
    db: AsyncSession,
    ctx: OperationContext,
    booking_id: int,
    amount,
    method: str,
    notes: Optional[str] = None,
) -> OperationResult[Booking]:
    async def attempt() -> Booking:
        value = _to_amount(amount, "Payment amount")
        if value <= 0:
            raise ValidationFailed("Payment amount must be positive")
        if not method or not method.strip():
            raise ValidationFailed("Payment method is required")

        booking = await _load_booking(db, booking_id)
        payment = Payment(
            amount=value,
            method=method.strip(),
            notes=notes,
            actor_id=ctx.actor.id,
            actor_name=ctx.actor.name,
        )
        booking.payments = [*(booking.payments or []), payment]
        _record(
            booking,
            ctx.actor,
            ActionKind.PAYMENT_ADDED,
            f"Payment of {value} via {payment.method} recorded",
        )
        await db.commit()
        logger.info("payment_added", booking_id=booking.id, payment_id=payment.id, amount=str(value))
        return booking

    return await _execute(db, "add_payment", ctx, attempt)


async def set_discount(
    db: AsyncSession,
    ctx: OperationContext,
    booking_id: int,
    percent,
    reason: str = "",
) -> OperationResult[Booking]:
    async def attempt() -> Booking:
        value = _to_amount(percent, "Discount")
        limit = ctx.policy.max_discount_percent
        if value < 0 or value > limit:
            raise ValidationFailed(f"Discount must be between 0 and {limit} percent")

        booking = await _load_booking(db, booking_id)
        booking.discount = value
        message = f"Discount set to {value}%"
        if reason:
            message = f"{message}: {reason}"
        _record(booking, ctx.actor, ActionKind.DISCOUNT_SET, message)
        await db.commit()
        logger.info("discount_set", booking_id=booking.id, percent=str(value))
        return booking

    return await _execute(db, "set_discount", ctx, attempt)


# ---------------------------------------------------------------------------
# reads
# ---------------------------------------------------------------------------


async def get_booking(db: AsyncSession, booking_id: int) -> OperationResult[Booking]:
    try:
        return OperationResult.success(await _load_booking(db, booking_id))
    except DomainError as exc:
        return OperationResult.failure(exc)


async def get_booking_summary(
    db: AsyncSession,
    booking_id: int,
    daily_hours: int = ledger.DEFAULT_DAILY_HOURS,
) -> OperationResult[tuple[Booking, Listing, ledger.FinancialSummary]]:
    try:
        booking = await _load_booking(db, booking_id)
        listing = await _load_listing(db, booking.listing_id)
    except DomainError as exc:
        return OperationResult.failure(exc)
    return OperationResult.success((booking, listing, ledger.compute_balance(booking, listing, daily_hours)))


async def available_units_for_booking(
    db: AsyncSession,
    booking_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> OperationResult[list]:
    """Units the booking could be moved to for the given (or its own) dates."""
    try:
        booking = await _load_booking(db, booking_id)
        units = await find_available_units(
            db,
            booking.listing_id,
            start_date or booking.start_date,
            end_date or booking.end_date,
            exclude_booking_id=booking.id,
        )
    except DomainError as exc:
        return OperationResult.failure(exc)
    return OperationResult.success(units)


async def list_bookings(
    db: AsyncSession,
    listing_id: Optional[int] = None,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
) -> list[Booking]:
    query = select(Booking)
    if listing_id is not None:
        query = query.where(Booking.listing_id == listing_id)
    if user_id is not None:
        query = query.where(Booking.user_id == user_id)
    if status is not None:
        query = query.where(Booking.status == status)
    result = await db.execute(query.order_by(Booking.created_at.desc(), Booking.id.desc()))
    return list(result.scalars().all())
