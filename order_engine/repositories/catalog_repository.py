"""
Read-only catalog access: businesses, items, duration tiers, opening hours.
"""

from typing import Sequence

from sqlalchemy import select

from order_engine.models import Business, DurationTier, Item, OpeningHours
from order_engine.repositories.base import BaseRepository
from order_engine.schemas import Scope


class CatalogRepository(BaseRepository[Item]):
    """Catalog reads scoped to a business. Writes belong to the admin endpoints."""

    @property
    def model(self) -> type[Item]:
        return Item

    async def get_business(self, business_id: int) -> Business | None:
        return await self._db.scalar(
            select(Business).where(
                Business.id == business_id,
                Business.is_active.is_(True),
            )
        )

    async def get_item(self, scope: Scope, item_id: int) -> Item | None:
        """Active item of the scope's business, shared or belonging to the scope's branch."""
        query = select(Item).where(
            Item.id == item_id,
            Item.business_id == scope.business_id,
            Item.is_active.is_(True),
        )
        if scope.branch_id is not None:
            query = query.where((Item.branch_id.is_(None)) | (Item.branch_id == scope.branch_id))
        return await self._db.scalar(query)

    async def list_items(self, scope: Scope, available_only: bool = True) -> Sequence[Item]:
        """Active items the scope sells, in the same scoping as ``get_item``, by name."""
        query = select(Item).where(
            Item.business_id == scope.business_id,
            Item.is_active.is_(True),
        )
        if scope.branch_id is not None:
            query = query.where((Item.branch_id.is_(None)) | (Item.branch_id == scope.branch_id))
        if available_only:
            query = query.where(Item.is_available.is_(True))
        result = await self._db.execute(query.order_by(Item.name, Item.id))
        return result.scalars().all()

    async def get_items(self, item_ids: Sequence[int]) -> dict[int, Item]:
        items = await self.find_by_ids(list(set(item_ids)))
        return {item.id: item for item in items}

    async def lock_items(self, item_ids: Sequence[int]) -> dict[int, Item]:
        """
        Lock item rows (SELECT ... FOR UPDATE) for the current transaction.

        Serializes concurrent confirmations that book the same item.
        Rows are locked in id order to avoid deadlocks.
        """
        if not item_ids:
            return {}
        result = await self._db.execute(
            select(Item)
            .where(Item.id.in_(sorted(set(item_ids))))
            .order_by(Item.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {item.id: item for item in result.scalars().all()}

    async def list_duration_tiers(self, item_id: int) -> Sequence[DurationTier]:
        result = await self._db.execute(
            select(DurationTier)
            .where(
                DurationTier.item_id == item_id,
                DurationTier.is_active.is_(True),
            )
            .order_by(DurationTier.duration_minutes)
        )
        return result.scalars().all()

    async def list_tiers_by_item(self, item_ids: Sequence[int]) -> dict[int, list[DurationTier]]:
        if not item_ids:
            return {}
        result = await self._db.execute(
            select(DurationTier)
            .where(
                DurationTier.item_id.in_(set(item_ids)),
                DurationTier.is_active.is_(True),
            )
            .order_by(DurationTier.item_id, DurationTier.duration_minutes)
        )
        tiers: dict[int, list[DurationTier]] = {}
        for tier in result.scalars().all():
            tiers.setdefault(tier.item_id, []).append(tier)
        return tiers

    async def find_duration_tier(self, item_id: int, duration_minutes: int) -> DurationTier | None:
        return await self._db.scalar(
            select(DurationTier).where(
                DurationTier.item_id == item_id,
                DurationTier.duration_minutes == duration_minutes,
                DurationTier.is_active.is_(True),
            )
        )

    async def get_opening_hours(self, scope: Scope, day_of_week: int | None = None) -> list[OpeningHours]:
        """
        Opening hours of the scope, optionally for one weekday.

        Branch rows replace the business-wide rows of the same weekday.
        """
        query = select(OpeningHours).where(OpeningHours.business_id == scope.business_id)
        if day_of_week is not None:
            query = query.where(OpeningHours.day_of_week == day_of_week)
        if scope.branch_id is None:
            query = query.where(OpeningHours.branch_id.is_(None))
        else:
            query = query.where(
                (OpeningHours.branch_id.is_(None)) | (OpeningHours.branch_id == scope.branch_id)
            )
        rows = (await self._db.execute(query.order_by(OpeningHours.day_of_week))).scalars().all()

        branch_days = {row.day_of_week for row in rows if row.branch_id is not None}
        return [
            row for row in rows
            if row.branch_id is not None or row.day_of_week not in branch_days
        ]
