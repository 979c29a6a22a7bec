"""Repository for product listing persistence."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ProductListing
from workflow import ListingStatus


class ListingRepository:
    """Encapsulates persistence logic for listings under assessment."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_listing(
        self,
        *,
        listing_id: str,
        seller_id: str,
        content: Dict[str, Any],
        status: ListingStatus,
        submitted_at: datetime,
        verified_at: Optional[datetime] = None,
    ) -> ProductListing:
        listing = ProductListing(
            id=listing_id,
            seller_id=seller_id,
            status=status,
            version=1,
            submitted_at=submitted_at,
            verified_at=verified_at,
            created_at=submitted_at,
            updated_at=submitted_at,
            **content,
        )
        self.session.add(listing)
        await self.session.flush()
        logger.debug("Created listing", listing_id=listing_id, status=status.value)
        return listing

    async def get_by_id(self, listing_id: str) -> Optional[ProductListing]:
        stmt = select(ProductListing).where(ProductListing.id == listing_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def exists(self, listing_id: str) -> bool:
        stmt = select(func.count(ProductListing.id)).where(ProductListing.id == listing_id)
        return (await self.session.execute(stmt)).scalar_one() > 0

    async def list_listings(
        self,
        *,
        seller_id: Optional[str] = None,
        status: Optional[ListingStatus] = None,
    ) -> List[ProductListing]:
        filters = []
        if seller_id is not None:
            filters.append(ProductListing.seller_id == seller_id)
        if status is not None:
            filters.append(ProductListing.status == status)

        stmt = select(ProductListing)
        if filters:
            stmt = stmt.where(*filters)
        stmt = stmt.order_by(ProductListing.submitted_at.desc(), ProductListing.id.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def compare_and_set(
        self,
        listing: ProductListing,
        *,
        expected_status: ListingStatus,
        expected_version: int,
        values: Dict[str, Any],
    ) -> bool:
        """Apply ``values`` only if the row still has the expected status and version.

        Returns False when a concurrent writer got there first. On success the
        in-session instance is refreshed so callers see the persisted row.
        """

        stmt = (
            update(ProductListing)
            .where(
                ProductListing.id == listing.id,
                ProductListing.status == expected_status,
                ProductListing.version == expected_version,
            )
            .values(
                **values,
                version=expected_version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            logger.debug(
                "Listing compare-and-set lost",
                listing_id=listing.id,
                expected_status=expected_status.value,
                expected_version=expected_version,
            )
            return False

        await self.session.refresh(listing)
        return True

    async def set_logistics_note(
        self,
        listing: ProductListing,
        *,
        note: str,
        expected_status: ListingStatus,
    ) -> bool:
        stmt = (
            update(ProductListing)
            .where(
                ProductListing.id == listing.id,
                ProductListing.status == expected_status,
            )
            .values(logistics_note=note, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        await self.session.refresh(listing)
        return True
