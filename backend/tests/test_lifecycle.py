"""
Tests for the booking lifecycle: create, update, confirm, complete, cancel.

Objects loaded before a failed operation are expired by its rollback, so
those tests keep plain ids and re-read state through the services.
"""

from datetime import date
from decimal import Decimal

import pytest

from reservations.models.booking import CANCELLED, COMPLETED, CONFIRMED, PENDING, Booking
from reservations.schemas.records import ActionKind
from reservations.services import booking_service
from reservations.services.availability import find_available_units
from reservations.services.context import Actor, OperationContext
from reservations.services.errors import ErrorKind
from reservations.services.notifications import BOOKING_COMPLETED, BOOKING_CONFIRMED, BOOKING_CREATED

MAY_1 = date(2026, 5, 1)
MAY_3 = date(2026, 5, 3)


async def _reload(db_session, booking_id: int) -> Booking:
    result = await booking_service.get_booking(db_session, booking_id)
    assert result.ok
    return result.value


async def _create(db_session, ctx, listing_id, user_id, start=MAY_1, end=MAY_3, guests=1, num_units=1):
    result = await booking_service.create_booking(
        db_session, ctx, listing_id, start, end, guests=guests, num_units=num_units, user_id=user_id
    )
    assert result.ok, result.message
    return result.value


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_assigns_first_units_and_records_history(db_session, make_listing, staff_ctx, guest_user, notifier):
    listing = await make_listing(units=3)
    unit_ids = [u.id for u in listing.units]

    result = await booking_service.create_booking(
        db_session, staff_ctx, listing.id, MAY_1, MAY_3, guests=3, num_units=2,
        user_id=guest_user.id, notifier=notifier,
    )

    assert result.ok
    booking = result.value
    assert booking.status == PENDING
    assert booking.user_id == guest_user.id
    assert booking.inventory_ids == unit_ids[:2]
    assert [a.action for a in booking.actions] == [ActionKind.CREATED]
    assert booking.actions[0].actor_name == staff_ctx.actor.name
    assert booking.status_message.startswith("Booking created by Ada Admin")
    assert notifier.kinds() == [BOOKING_CREATED]
    assert notifier.sent[0].user_email == "guest@example.com"


@pytest.mark.asyncio
async def test_create_with_insufficient_inventory_reports_available_count(db_session, make_listing, staff_ctx, guest_user):
    listing = await make_listing(units=2, max_guests=4)
    listing_id = listing.id

    result = await booking_service.create_booking(
        db_session, staff_ctx, listing_id, MAY_1, MAY_3, guests=1, num_units=3, user_id=guest_user.id
    )

    assert not result.ok
    assert result.kind == ErrorKind.INSUFFICIENT_INVENTORY
    assert result.error.details["available"] == 2
    assert "Available: 2" in result.message
    assert await booking_service.list_bookings(db_session, listing_id=listing_id) == []


@pytest.mark.asyncio
async def test_create_rejects_too_many_guests(db_session, make_listing, staff_ctx, guest_user):
    listing = await make_listing(units=2, max_guests=2)

    result = await booking_service.create_booking(
        db_session, staff_ctx, listing.id, MAY_1, MAY_3, guests=5, num_units=2, user_id=guest_user.id
    )

    assert result.kind == ErrorKind.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_create_rejects_inverted_dates(db_session, make_listing, staff_ctx, guest_user):
    listing = await make_listing(units=1)

    result = await booking_service.create_booking(
        db_session, staff_ctx, listing.id, MAY_3, MAY_1, guests=1, user_id=guest_user.id
    )

    assert result.kind == ErrorKind.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_create_for_missing_listing(db_session, staff_ctx, guest_user):
    result = await booking_service.create_booking(
        db_session, staff_ctx, 404, MAY_1, MAY_3, guests=1, user_id=guest_user.id
    )

    assert result.kind == ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_guest_checkout_provisions_user(db_session, make_listing):
    listing = await make_listing(units=1)
    ctx = OperationContext(actor=Actor(id=None, name="Walk In", role="guest"))

    result = await booking_service.create_booking(
        db_session, ctx, listing.id, MAY_1, MAY_1, guests=1,
        guest_email="Walk.In@Example.com", guest_name="Walk In",
    )

    assert result.ok
    booking = result.value
    assert booking.actions[0].actor_id == booking.user_id
    assert booking.actions[0].actor_name == "Walk In"

    again = await booking_service.create_booking(
        db_session, ctx, listing.id, MAY_3, MAY_3, guests=1, guest_email="walk.in@example.com",
    )
    assert again.value.user_id == booking.user_id


# ---------------------------------------------------------------------------
# confirm
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_double_booking_race_cancels_the_loser(db_session, make_listing, lenient_ctx, guest_user, other_user):
    listing = await make_listing(units=1)
    unit_id = listing.units[0].id

    booking_a = await _create(db_session, lenient_ctx, listing.id, guest_user.id, MAY_1, MAY_1)
    booking_b = await _create(db_session, lenient_ctx, listing.id, other_user.id, MAY_1, MAY_1)
    a_id, b_id = booking_a.id, booking_b.id
    # Pending does not block, so both were handed the only unit
    assert booking_a.inventory_ids == booking_b.inventory_ids == [unit_id]

    confirmed = await booking_service.confirm_booking(db_session, lenient_ctx, a_id)
    assert confirmed.ok
    assert confirmed.value.status == CONFIRMED

    raced = await booking_service.confirm_booking(db_session, lenient_ctx, b_id)
    assert not raced.ok
    assert raced.kind == ErrorKind.INVENTORY_CONFLICT
    assert raced.value.status == CANCELLED

    loser = await _reload(db_session, b_id)
    assert loser.status == CANCELLED
    assert loser.actions[-1].action == ActionKind.SYSTEM
    assert loser.actions[-1].actor_name == "System"
    assert loser.actions[-1].actor_id is None

    winner = await _reload(db_session, a_id)
    assert winner.status == CONFIRMED
    assert winner.inventory_ids == [unit_id]


@pytest.mark.asyncio
async def test_confirmed_bookings_never_share_units(db_session, make_listing, lenient_ctx, guest_user):
    listing = await make_listing(units=3)
    ids = []
    for _ in range(3):
        booking = await _create(db_session, lenient_ctx, listing.id, guest_user.id)
        ids.append(booking.id)
        assert (await booking_service.confirm_booking(db_session, lenient_ctx, booking.id)).ok

    held = [unit for booking_id in ids for unit in (await _reload(db_session, booking_id)).inventory_ids]
    assert len(held) == len(set(held)) == 3
    assert await find_available_units(db_session, listing.id, MAY_1, MAY_3) == []


@pytest.mark.asyncio
async def test_confirm_twice_is_an_invalid_transition(db_session, make_listing, lenient_ctx, guest_user):
    listing = await make_listing(units=2)
    booking = await _create(db_session, lenient_ctx, listing.id, guest_user.id)
    booking_id = booking.id
    assert (await booking_service.confirm_booking(db_session, lenient_ctx, booking_id)).ok
    units_before = list(booking.inventory_ids)

    second = await booking_service.confirm_booking(db_session, lenient_ctx, booking_id)

    assert second.kind == ErrorKind.INVALID_TRANSITION
    reloaded = await _reload(db_session, booking_id)
    assert reloaded.status == CONFIRMED
    assert reloaded.inventory_ids == units_before
    assert [a.action for a in reloaded.actions].count(ActionKind.CONFIRMED) == 1


@pytest.mark.asyncio
async def test_confirm_requires_deposit(db_session, make_listing, staff_ctx, guest_user, notifier):
    listing = await make_listing(units=2, price="100.00")
    booking = await _create(db_session, staff_ctx, listing.id, guest_user.id, num_units=2)
    booking_id = booking.id

    refused = await booking_service.confirm_booking(db_session, staff_ctx, booking_id, notifier=notifier)
    assert refused.kind == ErrorKind.DEPOSIT_REQUIRED
    assert (await _reload(db_session, booking_id)).status == PENDING

    # Deposit is one night per unit
    await booking_service.add_payment(db_session, staff_ctx, booking_id, Decimal("200.00"), "card")
    confirmed = await booking_service.confirm_booking(db_session, staff_ctx, booking_id, notifier=notifier)

    assert confirmed.ok
    assert notifier.kinds() == [BOOKING_CONFIRMED]


@pytest.mark.asyncio
async def test_confirm_missing_booking(db_session, lenient_ctx):
    result = await booking_service.confirm_booking(db_session, lenient_ctx, 12345)

    assert result.kind == ErrorKind.NOT_FOUND


# ---------------------------------------------------------------------------
# update
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_failed_update_leaves_booking_untouched(db_session, make_listing, lenient_ctx, guest_user, other_user):
    listing = await make_listing(units=2)
    mine = await _create(db_session, lenient_ctx, listing.id, guest_user.id, MAY_1, MAY_3)
    theirs = await _create(db_session, lenient_ctx, listing.id, other_user.id, date(2026, 5, 10), date(2026, 5, 12), num_units=2)
    mine_id = mine.id
    await booking_service.confirm_booking(db_session, lenient_ctx, mine_id)
    await booking_service.confirm_booking(db_session, lenient_ctx, theirs.id)

    result = await booking_service.update_booking(
        db_session, lenient_ctx, mine_id, start_date=date(2026, 5, 10), end_date=date(2026, 5, 11)
    )

    assert result.kind == ErrorKind.INSUFFICIENT_INVENTORY
    reloaded = await _reload(db_session, mine_id)
    assert (reloaded.start_date, reloaded.end_date) == (MAY_1, MAY_3)
    assert reloaded.status == CONFIRMED
    assert len(reloaded.inventory_ids) == 1
    assert [a.action for a in reloaded.actions] == [ActionKind.CREATED, ActionKind.CONFIRMED]


@pytest.mark.asyncio
async def test_material_change_sends_confirmed_booking_back_to_pending(db_session, make_listing, lenient_ctx, guest_user):
    listing = await make_listing(units=2)
    booking = await _create(db_session, lenient_ctx, listing.id, guest_user.id)
    await booking_service.confirm_booking(db_session, lenient_ctx, booking.id)

    result = await booking_service.update_booking(db_session, lenient_ctx, booking.id, end_date=date(2026, 5, 5))

    assert result.ok
    assert result.value.status == PENDING
    assert result.value.end_date == date(2026, 5, 5)
    assert result.value.actions[-1].action == ActionKind.UPDATED
    assert "confirmed again" in result.value.status_message


@pytest.mark.asyncio
async def test_guest_count_change_keeps_confirmation(db_session, make_listing, lenient_ctx, guest_user):
    listing = await make_listing(units=1, max_guests=4)
    booking = await _create(db_session, lenient_ctx, listing.id, guest_user.id)
    await booking_service.confirm_booking(db_session, lenient_ctx, booking.id)

    result = await booking_service.update_booking(db_session, lenient_ctx, booking.id, guests=3)

    assert result.ok
    assert result.value.status == CONFIRMED
    assert result.value.guests == 3


@pytest.mark.asyncio
async def test_growing_a_booking_keeps_held_units(db_session, make_listing, lenient_ctx, guest_user):
    listing = await make_listing(units=3)
    first, second, third = [u.id for u in listing.units]
    booking = await _create(db_session, lenient_ctx, listing.id, guest_user.id)
    await booking_service.update_booking(db_session, lenient_ctx, booking.id, inventory_ids=[third])

    result = await booking_service.update_booking(db_session, lenient_ctx, booking.id, num_units=2)

    assert result.ok
    assert result.value.inventory_ids == [third, first]


@pytest.mark.asyncio
async def test_confirmed_booking_unit_selection_must_be_free(db_session, make_listing, lenient_ctx, guest_user, other_user):
    listing = await make_listing(units=2)
    first, second = [u.id for u in listing.units]
    blocker = await _create(db_session, lenient_ctx, listing.id, other_user.id)
    await booking_service.update_booking(db_session, lenient_ctx, blocker.id, inventory_ids=[second])
    await booking_service.confirm_booking(db_session, lenient_ctx, blocker.id)
    mine = await _create(db_session, lenient_ctx, listing.id, guest_user.id)
    mine_id = mine.id
    assert mine.inventory_ids == [first]
    await booking_service.confirm_booking(db_session, lenient_ctx, mine_id)

    taken = await booking_service.update_booking(db_session, lenient_ctx, mine_id, inventory_ids=[second])
    assert taken.kind == ErrorKind.INSUFFICIENT_INVENTORY

    foreign = await booking_service.update_booking(db_session, lenient_ctx, mine_id, inventory_ids=[9999])
    assert foreign.kind == ErrorKind.VALIDATION_ERROR

    assert (await _reload(db_session, mine_id)).inventory_ids == [first]


@pytest.mark.asyncio
async def test_pending_update_is_applied_directly_and_checked_on_confirm(
    db_session, make_listing, lenient_ctx, guest_user, other_user
):
    listing = await make_listing(units=1)
    unit_id = listing.units[0].id
    may_10 = date(2026, 5, 10)
    blocker = await _create(db_session, lenient_ctx, listing.id, other_user.id, may_10, may_10)
    await booking_service.confirm_booking(db_session, lenient_ctx, blocker.id)
    mine = await _create(db_session, lenient_ctx, listing.id, guest_user.id)
    mine_id = mine.id

    moved = await booking_service.update_booking(
        db_session, lenient_ctx, mine_id, start_date=may_10, end_date=may_10
    )
    assert moved.ok
    assert moved.value.status == PENDING
    assert moved.value.inventory_ids == [unit_id]

    confirmed = await booking_service.confirm_booking(db_session, lenient_ctx, mine_id)
    assert confirmed.kind == ErrorKind.INVENTORY_CONFLICT
    assert (await _reload(db_session, mine_id)).status == CANCELLED


@pytest.mark.asyncio
async def test_pending_update_cannot_exceed_listing_units(db_session, make_listing, lenient_ctx, guest_user):
    listing = await make_listing(units=2)
    booking = await _create(db_session, lenient_ctx, listing.id, guest_user.id)
    booking_id = booking.id

    result = await booking_service.update_booking(db_session, lenient_ctx, booking_id, num_units=3)

    assert result.kind == ErrorKind.INSUFFICIENT_INVENTORY
    assert len((await _reload(db_session, booking_id)).inventory_ids) == 1


@pytest.mark.asyncio
async def test_change_owner_only_touches_owner_and_history(db_session, make_listing, lenient_ctx, guest_user, other_user):
    listing = await make_listing(units=1)
    booking = await _create(db_session, lenient_ctx, listing.id, guest_user.id)
    units = list(booking.inventory_ids)

    result = await booking_service.change_booking_owner(db_session, lenient_ctx, booking.id, other_user.id)

    assert result.ok
    assert result.value.user_id == other_user.id
    assert result.value.inventory_ids == units
    assert result.value.status == PENDING
    assert result.value.actions[-1].action == ActionKind.OWNER_CHANGED

    same = await booking_service.change_booking_owner(db_session, lenient_ctx, booking.id, other_user.id)
    assert same.kind == ErrorKind.VALIDATION_ERROR


# ---------------------------------------------------------------------------
# complete / cancel
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_complete_requires_zero_balance(db_session, make_listing, staff_ctx, guest_user, notifier):
    listing = await make_listing(units=1, price="100.00")
    # Two nights
    booking = await _create(db_session, staff_ctx, listing.id, guest_user.id, MAY_1, MAY_3)
    booking_id = booking.id
    await booking_service.add_payment(db_session, staff_ctx, booking_id, "100.00", "cash")
    assert (await booking_service.confirm_booking(db_session, staff_ctx, booking_id)).ok

    owing = await booking_service.complete_booking(db_session, staff_ctx, booking_id, notifier=notifier)
    assert owing.kind == ErrorKind.OUTSTANDING_BALANCE
    assert owing.error.details["balance"] == Decimal("100.00")

    await booking_service.add_payment(db_session, staff_ctx, booking_id, "100.00", "cash")
    done = await booking_service.complete_booking(db_session, staff_ctx, booking_id, notifier=notifier)

    assert done.ok
    assert done.value.status == COMPLETED
    assert notifier.kinds() == [BOOKING_COMPLETED]


@pytest.mark.asyncio
async def test_complete_requires_confirmed(db_session, make_listing, lenient_ctx, guest_user):
    listing = await make_listing(units=1)
    booking = await _create(db_session, lenient_ctx, listing.id, guest_user.id)

    result = await booking_service.complete_booking(db_session, lenient_ctx, booking.id)

    assert result.kind == ErrorKind.INVALID_TRANSITION


@pytest.mark.asyncio
async def test_terminal_bookings_reject_further_transitions(db_session, make_listing, lenient_ctx, guest_user):
    listing = await make_listing(units=1)
    booking = await _create(db_session, lenient_ctx, listing.id, guest_user.id)
    booking_id = booking.id

    cancelled = await booking_service.cancel_booking(db_session, lenient_ctx, booking_id, "no longer needed")
    assert cancelled.ok
    assert cancelled.value.status_message.endswith("no longer needed")

    for outcome in (
        await booking_service.cancel_booking(db_session, lenient_ctx, booking_id),
        await booking_service.confirm_booking(db_session, lenient_ctx, booking_id),
        await booking_service.complete_booking(db_session, lenient_ctx, booking_id),
        await booking_service.update_booking(db_session, lenient_ctx, booking_id, guests=2),
    ):
        assert outcome.kind == ErrorKind.INVALID_TRANSITION

    assert (await _reload(db_session, booking_id)).status == CANCELLED


# ---------------------------------------------------------------------------
# money
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_bills_payments_and_discount_are_audited(db_session, make_listing, lenient_ctx, guest_user):
    listing = await make_listing(units=1)
    booking = await _create(db_session, lenient_ctx, listing.id, guest_user.id)
    booking_id = booking.id

    assert (await booking_service.add_bill(db_session, lenient_ctx, booking_id, "Minibar", "12.50")).ok
    assert (await booking_service.add_payment(db_session, lenient_ctx, booking_id, 50, "card", "front desk")).ok
    assert (await booking_service.set_discount(db_session, lenient_ctx, booking_id, "10", "loyalty")).ok

    reloaded = await _reload(db_session, booking_id)
    assert [b.amount for b in reloaded.bills] == [Decimal("12.50")]
    assert reloaded.payments[0].method == "card"
    assert reloaded.payments[0].actor_name == "Ada Admin"
    assert reloaded.discount == Decimal("10")
    assert [a.action for a in reloaded.actions][-3:] == [
        ActionKind.BILL_ADDED,
        ActionKind.PAYMENT_ADDED,
        ActionKind.DISCOUNT_SET,
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("percent", ["-1", "15.01", "40", "abc"])
async def test_discount_outside_bounds_is_rejected(db_session, make_listing, lenient_ctx, guest_user, percent):
    listing = await make_listing(units=1)
    booking = await _create(db_session, lenient_ctx, listing.id, guest_user.id)
    booking_id = booking.id

    result = await booking_service.set_discount(db_session, lenient_ctx, booking_id, percent)

    assert result.kind == ErrorKind.VALIDATION_ERROR
    assert (await _reload(db_session, booking_id)).discount == Decimal("0")


@pytest.mark.asyncio
async def test_non_positive_amounts_are_rejected(db_session, make_listing, lenient_ctx, guest_user):
    listing = await make_listing(units=1)
    booking = await _create(db_session, lenient_ctx, listing.id, guest_user.id)
    booking_id = booking.id

    assert (await booking_service.add_bill(db_session, lenient_ctx, booking_id, "Nothing", 0)).kind == ErrorKind.VALIDATION_ERROR
    assert (await booking_service.add_payment(db_session, lenient_ctx, booking_id, "-5", "card")).kind == ErrorKind.VALIDATION_ERROR
    assert (await booking_service.add_payment(db_session, lenient_ctx, booking_id, "5", " ")).kind == ErrorKind.VALIDATION_ERROR
