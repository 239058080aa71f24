"""
Commit-time protection for allocation changes.

CONCURRENCY STRATEGY: Listing version + retry
=============================================

Problem:
  Two requests compute availability for the same listing at the same time,
  both see unit 7 free, both confirm a booking holding unit 7.
  Result: double allocation.

Solution:
  Every commit that changes which units are held on a listing also bumps
  `listings.version` with

      UPDATE listings SET version = version + 1
      WHERE id = :listing_id AND version = :version_we_read

  If no row is updated, another request committed an allocation change
  after we read the listing. We roll back and run the whole operation
  again against fresh state, so the availability re-check sees the winner's
  hold. On PostgreSQL the listing row is also read with SELECT ... FOR
  UPDATE, which serializes writers on one listing and makes the retry rare.

  Contention is always scoped to a single listing.
"""

import time
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from reservations.core.logging import get_logger
from reservations.core.metrics import booking_latency, db_retries, record_failure
from reservations.models.listing import Listing
from reservations.services.errors import DomainError, ErrorKind, NotFound, OperationResult

logger = get_logger(__name__)

T = TypeVar("T")


class VersionConflict(Exception):
    def __init__(self, listing_id: int, version: int):
        super().__init__(f"Listing {listing_id} changed since version {version}")
        self.listing_id = listing_id
        self.version = version


async def load_listing_for_update(db: AsyncSession, listing_id: int) -> Listing:
    result = await db.execute(
        select(Listing)
        .where(Listing.id == listing_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    listing = result.scalar_one_or_none()
    if listing is None:
        raise NotFound("Listing", listing_id)
    return listing


async def claim_listing_version(db: AsyncSession, listing: Listing) -> None:
    """Bump the listing version, or raise VersionConflict if it moved."""
    read_version = listing.version
    result = await db.execute(
        update(Listing)
        .where(Listing.id == listing.id, Listing.version == read_version)
        .values(version=Listing.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise VersionConflict(listing.id, read_version)
    set_committed_value(listing, "version", read_version + 1)


async def run_allocation(
    db: AsyncSession,
    operation: str,
    attempt: Callable[[], Awaitable[T]],
    max_attempts: int,
) -> T:
    """
    Run `attempt` until it commits without a version conflict.
    `attempt` must read everything it needs itself and commit on success.
    """
    for attempt_no in range(1, max_attempts + 1):
        try:
            return await attempt()
        except VersionConflict as conflict:
            await db.rollback()
            db_retries.inc()
            logger.info(
                "booking_retry",
                operation=operation,
                listing_id=conflict.listing_id,
                attempt=attempt_no,
                reason="version_conflict",
            )

    raise DomainError(
        ErrorKind.INVENTORY_CONFLICT,
        "The listing's inventory changed while processing the request. Please try again.",
    )


async def run_operation(
    db: AsyncSession,
    operation: str,
    work: Callable[[], Awaitable[T]],
    max_attempts: int,
) -> OperationResult[T]:
    """
    Engine operation boundary: run `work` with version retries and turn any
    DomainError into a failed OperationResult after rolling back.
    """
    started = time.perf_counter()
    try:
        value = await run_allocation(db, operation, work, max_attempts)
    except DomainError as exc:
        if db.in_transaction():
            await db.rollback()
        record_failure(exc.kind.value)
        logger.warning(
            "operation_failed",
            operation=operation,
            kind=exc.kind.value,
            reason=exc.message,
        )
        return OperationResult.failure(exc, value=exc.details.get("booking"))
    finally:
        booking_latency.labels(operation=operation).observe(time.perf_counter() - started)
    return OperationResult.success(value)
