"""
User lookups and guest-checkout provisioning.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from reservations.core.logging import get_logger
from reservations.models.user import User
from reservations.services.errors import NotFound, ValidationFailed

logger = get_logger(__name__)


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User", user_id)
    return user


async def resolve_guest_user(db: AsyncSession, email: str, name: str) -> User:
    """
    Return the user registered under `email`, or provision a provisional one.
    Flushes only; the caller's unit of work commits or rolls it back.
    """
    email = email.strip().lower()
    if not email or "@" not in email:
        raise ValidationFailed("A valid email is required for guest checkout")

    result = await db.execute(select(User).where(func.lower(User.email) == email))
    user = result.scalar_one_or_none()
    if user is not None:
        if user.status == "disabled":
            raise ValidationFailed("This account is disabled")
        return user

    user = User(email=email, name=name.strip() or email, role="guest", status="provisional")
    db.add(user)
    await db.flush()
    logger.info("guest_user_provisioned", user_id=user.id, email=email)
    return user
