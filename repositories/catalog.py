"""Repository for the storefront catalog projection."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import CatalogEntry


class CatalogRepository:
    """Encapsulates persistence logic for catalog entries."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_listing(self, listing_id: str) -> Optional[CatalogEntry]:
        stmt = select(CatalogEntry).where(CatalogEntry.listing_id == listing_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_entry(
        self,
        *,
        listing_id: str,
        seller_id: str,
        approval_status: str,
        rejection_reason: Optional[str],
        published_at: Optional[datetime] = None,
    ) -> CatalogEntry:
        entry = await self.get_by_listing(listing_id)
        if entry is None:
            entry = CatalogEntry(listing_id=listing_id, seller_id=seller_id)
            self.session.add(entry)

        entry.approval_status = approval_status
        entry.rejection_reason = rejection_reason
        if published_at is not None and entry.published_at is None:
            entry.published_at = published_at
        entry.update_timestamp()
        await self.session.flush()
        return entry
