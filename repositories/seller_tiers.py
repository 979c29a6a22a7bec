"""Repository for seller trust tiers."""

from __future__ import annotations

from typing import Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import SellerTier
from workflow import TierLevel


class SellerTierRepository:
    """Encapsulates persistence logic for seller trust tiers."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_seller(self, seller_id: str) -> Optional[SellerTier]:
        stmt = select(SellerTier).where(SellerTier.seller_id == seller_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_tier(
        self,
        *,
        seller_id: str,
        tier_level: TierLevel,
        bypasses_assessment: bool,
        updated_by: Optional[str],
    ) -> SellerTier:
        tier = await self.get_by_seller(seller_id)
        if tier is None:
            tier = SellerTier(seller_id=seller_id)
            self.session.add(tier)

        tier.tier_level = tier_level
        tier.bypasses_assessment = bypasses_assessment
        tier.updated_by = updated_by
        tier.update_timestamp()
        await self.session.flush()
        logger.debug(
            "Upserted seller tier",
            seller_id=seller_id,
            tier_level=tier_level.value,
            bypasses_assessment=bypasses_assessment,
        )
        return tier
