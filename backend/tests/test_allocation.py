"""
Tests for the listing version guard and the operation retry loop.
"""

import pytest

from reservations.services.allocation import (
    VersionConflict,
    claim_listing_version,
    load_listing_for_update,
    run_allocation,
    run_operation,
)
from reservations.services.errors import DomainError, ErrorKind, ValidationFailed


@pytest.mark.asyncio
async def test_stale_version_is_detected(session_factory, make_listing):
    listing = await make_listing(units=1)
    listing_id = listing.id

    async with session_factory() as first, session_factory() as second:
        stale = await load_listing_for_update(first, listing_id)
        await first.commit()

        winner = await load_listing_for_update(second, listing_id)
        await claim_listing_version(second, winner)
        await second.commit()

        with pytest.raises(VersionConflict):
            await claim_listing_version(first, stale)
        await first.rollback()


@pytest.mark.asyncio
async def test_claim_bumps_version(db_session, make_listing):
    listing = await make_listing(units=1)
    version = listing.version

    await claim_listing_version(db_session, listing)
    await db_session.commit()

    reloaded = await load_listing_for_update(db_session, listing.id)
    assert reloaded.version == version + 1


@pytest.mark.asyncio
async def test_run_allocation_retries_version_conflicts(db_session):
    calls = []

    async def attempt():
        calls.append(len(calls) + 1)
        if len(calls) < 3:
            raise VersionConflict(1, len(calls))
        return "done"

    assert await run_allocation(db_session, "test", attempt, max_attempts=3) == "done"
    assert calls == [1, 2, 3]


@pytest.mark.asyncio
async def test_run_allocation_gives_up_with_inventory_conflict(db_session):
    async def attempt():
        raise VersionConflict(1, 1)

    with pytest.raises(DomainError) as excinfo:
        await run_allocation(db_session, "test", attempt, max_attempts=2)

    assert excinfo.value.kind == ErrorKind.INVENTORY_CONFLICT


@pytest.mark.asyncio
async def test_run_operation_turns_domain_errors_into_results(db_session):
    async def attempt():
        raise ValidationFailed("nope", field="x")

    result = await run_operation(db_session, "test", attempt, max_attempts=3)

    assert not result.ok
    assert result.kind == ErrorKind.VALIDATION_ERROR
    assert result.message == "nope"
    assert result.value is None


@pytest.mark.asyncio
async def test_run_operation_success(db_session):
    async def attempt():
        return 42

    result = await run_operation(db_session, "test", attempt, max_attempts=1)

    assert result.ok
    assert result.value == 42
    assert result.kind is None
