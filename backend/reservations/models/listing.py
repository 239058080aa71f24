"""
Listing and inventory unit models.

Key design decisions:
- Units are rows, not a counter: bookings hold concrete unit ids so a
  confirmed reservation always points at something that physically exists.
- `version` is bumped by every commit that changes who holds which unit
  (booking create/update/confirm, inventory reconciliation). Writers use it
  as an optimistic lock to detect a concurrent allocation on the same listing.
- Reviews are a typed JSON list; `rating` is the denormalized average of
  approved reviews.
"""

from sqlalchemy import JSON, CheckConstraint, Column, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from reservations.db.base import Base, TimestampMixin
from reservations.db.types import RecordList
from reservations.schemas.records import Review

LISTING_TYPES = ("hotel", "event-center", "restaurant")
PRICE_UNITS = ("night", "hour", "person")


class Listing(Base, TimestampMixin):
    __tablename__ = "listings"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False)
    location = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    price = Column(Numeric(12, 2), nullable=False)
    price_unit = Column(String(10), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    max_guests = Column(Integer, nullable=False, default=1)
    rating = Column(Numeric(3, 2), nullable=False, default=0)
    reviews = Column(RecordList(Review), nullable=False, default=list)
    features = Column(JSON, nullable=False, default=list)

    # Optimistic locking version counter for allocation changes
    version = Column(Integer, nullable=False, default=1)

    units = relationship(
        "InventoryUnit",
        back_populates="listing",
        lazy="selectin",
        order_by="InventoryUnit.id",
        cascade="all, delete-orphan",
    )
    bookings = relationship("Booking", back_populates="listing", lazy="raise", passive_deletes=True)

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_listing_price_non_negative"),
        CheckConstraint("max_guests > 0", name="check_listing_max_guests_positive"),
        CheckConstraint(
            "type IN ('hotel', 'event-center', 'restaurant')", name="check_listing_type"
        ),
        CheckConstraint("price_unit IN ('night', 'hour', 'person')", name="check_price_unit"),
        Index("ix_listings_location", "location"),
    )

    def __repr__(self) -> str:
        return f"<Listing(id={self.id}, name={self.name}, units={len(self.units)})>"


class InventoryUnit(Base, TimestampMixin):
    __tablename__ = "listing_inventory"

    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(
        Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(255), nullable=False)

    listing = relationship("Listing", back_populates="units")

    def __repr__(self) -> str:
        return f"<InventoryUnit(id={self.id}, listing={self.listing_id}, name={self.name})>"
