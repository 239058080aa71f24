"""
Booking model: a reservation of concrete inventory units for a date range.

Key design decisions:
- Dates are calendar days, both ends inclusive.
- `inventory_ids` is an ordered JSON list of unit ids; availability is
  computed from the ids held by overlapping Confirmed bookings.
- Status is never deleted, only transitioned:
  Pending -> Confirmed -> Completed, Pending|Confirmed -> Cancelled.
- Action history, bills and payments are typed, ordered JSON lists.
"""

from sqlalchemy import CheckConstraint, Column, Date, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from reservations.db.base import Base, TimestampMixin
from reservations.db.types import IdList, RecordList
from reservations.schemas.records import ActionEntry, Bill, Payment

PENDING = "Pending"
CONFIRMED = "Confirmed"
COMPLETED = "Completed"
CANCELLED = "Cancelled"

BOOKING_STATUSES = (PENDING, CONFIRMED, COMPLETED, CANCELLED)
ACTIVE_STATUSES = (PENDING, CONFIRMED)
TERMINAL_STATUSES = (COMPLETED, CANCELLED)


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    guests = Column(Integer, nullable=False, default=1)
    inventory_ids = Column(IdList, nullable=False, default=list)
    status = Column(String(20), nullable=False, default=PENDING)
    status_message = Column(Text, nullable=True)
    actions = Column(RecordList(ActionEntry), nullable=False, default=list)
    bills = Column(RecordList(Bill), nullable=False, default=list)
    payments = Column(RecordList(Payment), nullable=False, default=list)
    discount = Column(Numeric(5, 2), nullable=False, default=0)

    user = relationship("User", back_populates="bookings", lazy="raise")
    listing = relationship("Listing", back_populates="bookings", lazy="raise")

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="check_booking_date_order"),
        CheckConstraint("guests > 0", name="check_booking_guests_positive"),
        CheckConstraint("discount >= 0 AND discount <= 100", name="check_booking_discount_range"),
        CheckConstraint(
            "status IN ('Pending', 'Confirmed', 'Completed', 'Cancelled')",
            name="check_booking_status",
        ),
        # Availability scans: bookings of one listing in one status over a date window
        Index("ix_bookings_listing_status_dates", "listing_id", "status", "start_date", "end_date"),
    )

    @property
    def unit_count(self) -> int:
        return len(self.inventory_ids or [])

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, listing={self.listing_id}, "
            f"{self.start_date}..{self.end_date}, status={self.status})>"
        )
