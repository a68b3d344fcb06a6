"""
Catalog Lookup

Read-only access to merchandise records through an explicit session.
Unknown ids are silently omitted by find_many; callers diff the result
against what they asked for.
"""

from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from order_desk.models import Merchandise, MerchandiseType


class CatalogLookup:
    """Read-only catalog queries bound to one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_id(self, merchandise_id: str) -> Optional[Merchandise]:
        return await self.session.get(Merchandise, merchandise_id)

    async def find_many(self, merchandise_ids: Iterable[str]) -> dict[str, Merchandise]:
        """
        Fetch every known item among ``merchandise_ids`` in one query.

        Returns:
            Mapping of id to item; ids that resolve to nothing are absent.
        """
        ids = set(merchandise_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(Merchandise).where(Merchandise.id.in_(ids))
        )
        return {item.id: item for item in result.scalars().all()}

    async def list_items(
        self,
        available: Optional[bool] = None,
        category: Optional[MerchandiseType] = None,
    ) -> list[Merchandise]:
        """List the menu, oldest entries first."""
        query = select(Merchandise).order_by(Merchandise.created_at.asc(), Merchandise.name.asc())
        if available is not None:
            query = query.where(Merchandise.is_available == available)
        if category is not None:
            query = query.where(Merchandise.type == category)

        result = await self.session.execute(query)
        return list(result.scalars().all())
