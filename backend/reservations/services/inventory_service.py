"""
Inventory reconciliation: bring a listing's units in line with a desired list.

A unit referenced by a Pending or Confirmed booking can never be deleted.
If any deletion is blocked the whole reconciliation is refused, so a listing
is never left with some renames applied and some deletions missing.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from reservations.core.logging import get_logger
from reservations.core.metrics import record_inventory_change
from reservations.models.listing import InventoryUnit, Listing
from reservations.services.allocation import claim_listing_version, load_listing_for_update, run_operation
from reservations.services.availability import get_active_unit_ids
from reservations.services.context import OperationContext
from reservations.services.errors import DomainError, ErrorKind, OperationResult, ValidationFailed

logger = get_logger(__name__)


@dataclass(frozen=True)
class UnitSpec:
    name: str
    id: Optional[int] = None


@dataclass(frozen=True)
class ReconciliationPlan:
    to_create: list[str]
    to_rename: dict[int, str]
    to_delete: list[int]

    @property
    def is_empty(self) -> bool:
        return not (self.to_create or self.to_rename or self.to_delete)


def default_unit_name(listing: Listing, position: int) -> str:
    return f"{listing.name} Unit {position}"


def plan_reconciliation(current: Sequence[InventoryUnit], desired: Sequence[UnitSpec]) -> ReconciliationPlan:
    """Diff current units against the desired list. Pure."""
    by_id = {unit.id: unit for unit in current}
    seen: set[int] = set()
    to_create: list[str] = []
    to_rename: dict[int, str] = {}

    for spec in desired:
        name = spec.name.strip()
        if not name:
            raise ValidationFailed("Unit names must not be empty")
        if spec.id is None:
            to_create.append(name)
            continue
        if spec.id not in by_id:
            raise ValidationFailed(f"Unit {spec.id} does not belong to this listing", units=[spec.id])
        if spec.id in seen:
            raise ValidationFailed(f"Unit {spec.id} is listed more than once", units=[spec.id])
        seen.add(spec.id)
        if by_id[spec.id].name != name:
            to_rename[spec.id] = name

    to_delete = [unit.id for unit in current if unit.id not in seen]
    return ReconciliationPlan(to_create=to_create, to_rename=to_rename, to_delete=to_delete)


async def _ensure_deletable(db: AsyncSession, listing_id: int, unit_ids: Sequence[int]) -> None:
    if not unit_ids:
        return
    in_use = sorted(set(unit_ids) & await get_active_unit_ids(db, listing_id))
    if in_use:
        raise DomainError(
            ErrorKind.INVENTORY_IN_USE,
            f"Units {in_use} are held by pending or confirmed bookings and cannot be removed",
            units=in_use,
        )


def _apply(listing: Listing, plan: ReconciliationPlan) -> None:
    if plan.to_delete:
        doomed = set(plan.to_delete)
        # delete-orphan cascade removes the rows at flush
        listing.units = [unit for unit in listing.units if unit.id not in doomed]
    for unit in listing.units:
        if unit.id in plan.to_rename:
            unit.name = plan.to_rename[unit.id]
    for name in plan.to_create:
        listing.units.append(InventoryUnit(name=name))


async def reconcile_inventory(
    db: AsyncSession,
    ctx: OperationContext,
    listing_id: int,
    desired: Sequence[UnitSpec],
) -> OperationResult[Listing]:
    """
    Create units without an id, rename units whose name changed and delete
    current units missing from `desired`, all in one commit.
    Fails with InventoryInUse, changing nothing, if a deleted unit is held
    by an active booking.
    """

    async def attempt() -> Listing:
        listing = await load_listing_for_update(db, listing_id)
        plan = plan_reconciliation(listing.units, desired)
        await _ensure_deletable(db, listing.id, plan.to_delete)

        if plan.is_empty:
            # Nothing to write; end the transaction to release the row lock
            await db.commit()
            return listing

        _apply(listing, plan)
        await db.flush()
        await claim_listing_version(db, listing)
        await db.commit()

        record_inventory_change("created", len(plan.to_create))
        record_inventory_change("renamed", len(plan.to_rename))
        record_inventory_change("deleted", len(plan.to_delete))
        logger.info(
            "inventory_reconciled",
            listing_id=listing.id,
            actor_id=ctx.actor.id,
            created=len(plan.to_create),
            renamed=sorted(plan.to_rename),
            deleted=plan.to_delete,
        )
        return listing

    return await run_operation(db, "reconcile_inventory", attempt, ctx.policy.max_retry_attempts)


async def set_unit_count(
    db: AsyncSession,
    ctx: OperationContext,
    listing_id: int,
    count: int,
) -> OperationResult[Listing]:
    """
    Grow or shrink a listing to `count` units. Shrinking removes the newest
    units not held by an active booking; if there are not enough of those
    the listing is left unchanged and InventoryInUse is returned.
    """

    async def attempt() -> Listing:
        if count < 0:
            raise ValidationFailed("Unit count must not be negative")

        listing = await load_listing_for_update(db, listing_id)
        current = list(listing.units)

        if count > len(current):
            desired = [UnitSpec(id=unit.id, name=unit.name) for unit in current]
            desired += [
                UnitSpec(name=default_unit_name(listing, position))
                for position in range(len(current) + 1, count + 1)
            ]
        elif count < len(current):
            active = await get_active_unit_ids(db, listing.id)
            removable = [unit.id for unit in reversed(current) if unit.id not in active]
            excess = len(current) - count
            if len(removable) < excess:
                raise DomainError(
                    ErrorKind.INVENTORY_IN_USE,
                    f"Cannot reduce inventory to {count}: only {len(removable)} of "
                    f"{len(current)} units are free of pending or confirmed bookings",
                    removable=len(removable),
                )
            doomed = set(removable[:excess])
            desired = [UnitSpec(id=unit.id, name=unit.name) for unit in current if unit.id not in doomed]
        else:
            await db.commit()
            return listing

        plan = plan_reconciliation(current, desired)
        await _ensure_deletable(db, listing.id, plan.to_delete)
        _apply(listing, plan)
        await db.flush()
        await claim_listing_version(db, listing)
        await db.commit()

        record_inventory_change("created", len(plan.to_create))
        record_inventory_change("deleted", len(plan.to_delete))
        logger.info(
            "inventory_resized",
            listing_id=listing.id,
            actor_id=ctx.actor.id,
            previous=len(current),
            count=count,
        )
        return listing

    return await run_operation(db, "set_unit_count", attempt, ctx.policy.max_retry_attempts)
