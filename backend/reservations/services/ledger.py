"""
Financial ledger: what a booking costs and what is still owed.

Nothing here is persisted. The summary is recomputed from the booking's
dates, units, bills, payments and discount every time it is needed.

Pricing by listing price unit:
  night   price x nights x units, nights = max(days - 1, 1)
  hour    price x days x daily_hours x units
  person  price x guests x units

The discount is a percentage of the base cost and reduces the total owed.
"""

from dataclasses import dataclass
from decimal import Decimal

from reservations.models.booking import Booking
from reservations.models.listing import Listing

DEFAULT_DAILY_HOURS = 12
_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class FinancialSummary:
    base_cost: Decimal
    discount_amount: Decimal
    bills_total: Decimal
    total_bill: Decimal
    total_payments: Decimal
    balance: Decimal
    deposit_required: Decimal


def duration_days(booking: Booking) -> int:
    return (booking.end_date - booking.start_date).days + 1


def nights(booking: Booking) -> int:
    return max(duration_days(booking) - 1, 1)


def base_cost(booking: Booking, listing: Listing, daily_hours: int = DEFAULT_DAILY_HOURS) -> Decimal:
    price = Decimal(listing.price)
    units = booking.unit_count
    if listing.price_unit == "night":
        return price * nights(booking) * units
    if listing.price_unit == "hour":
        return price * duration_days(booking) * daily_hours * units
    if listing.price_unit == "person":
        return price * booking.guests * units
    return Decimal("0")


def deposit_required(booking: Booking, listing: Listing) -> Decimal:
    """One night / hour / person per unit."""
    return Decimal(listing.price) * booking.unit_count


def total_payments(booking: Booking) -> Decimal:
    return sum((p.amount for p in booking.payments or []), Decimal("0"))


def compute_balance(
    booking: Booking,
    listing: Listing,
    daily_hours: int = DEFAULT_DAILY_HOURS,
) -> FinancialSummary:
    base = base_cost(booking, listing, daily_hours)
    discount_amount = (base * Decimal(booking.discount or 0) / 100).quantize(_CENTS)
    bills_total = sum((b.amount for b in booking.bills or []), Decimal("0"))
    total_bill = base + bills_total - discount_amount
    paid = total_payments(booking)
    return FinancialSummary(
        base_cost=base,
        discount_amount=discount_amount,
        bills_total=bills_total,
        total_bill=total_bill,
        total_payments=paid,
        balance=total_bill - paid,
        deposit_required=deposit_required(booking, listing),
    )
