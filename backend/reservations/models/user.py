"""
User model. Passwords and sessions live with the identity provider;
this table only anchors bookings and audit entries to a person.
"""

from sqlalchemy import CheckConstraint, Column, Integer, String
from sqlalchemy.orm import relationship

from reservations.db.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="guest")  # admin, staff, guest
    status = Column(String(20), nullable=False, default="active")  # active, disabled, provisional

    bookings = relationship("Booking", back_populates="user", lazy="raise")

    __table_args__ = (
        CheckConstraint("role IN ('admin', 'staff', 'guest')", name="check_user_role"),
        CheckConstraint(
            "status IN ('active', 'disabled', 'provisional')", name="check_user_status"
        ),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, status={self.status})>"
