"""Seller trust tiers and the assessment bypass decision."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import SellerTier
from events import SellerTierChanged
from repositories import SellerTierRepository
from services.event_bus import EventBus
from utils.error_handling import ErrorContext, ValidationError
from workflow import ELEVATED_TIERS, TierLevel


@dataclass(slots=True)
class SellerTierState:
    """Snapshot of a seller's trust tier."""

    seller_id: str
    tier_level: TierLevel = TierLevel.STANDARD
    bypasses_assessment: bool = False
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def grants_bypass(self) -> bool:
        return self.bypasses_assessment and self.tier_level in ELEVATED_TIERS


def _build_state(tier: SellerTier) -> SellerTierState:
    return SellerTierState(
        seller_id=tier.seller_id,
        tier_level=tier.tier_level,
        bypasses_assessment=tier.bypasses_assessment,
        updated_by=tier.updated_by,
        updated_at=tier.updated_at,
    )


class TierPolicy:
    """Decides whether a seller's submissions skip the assessment pipeline.

    Lookups always hit the database; nothing is cached between submissions,
    so a tier change applies to the next submission and never to listings
    that were already submitted.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker,
        event_bus: EventBus | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._event_bus = event_bus

    @asynccontextmanager
    async def _session_scope(
        self, session: Optional[AsyncSession]
    ) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return
        async with self._session_factory() as own_session:
            yield own_session

    async def get_tier(
        self, seller_id: str, *, session: Optional[AsyncSession] = None
    ) -> SellerTierState:
        async with self._session_scope(session) as active:
            tier = await SellerTierRepository(active).get_by_seller(seller_id)
        if tier is None:
            return SellerTierState(seller_id=seller_id)
        return _build_state(tier)

    async def is_bypassed(
        self, seller_id: str, *, session: Optional[AsyncSession] = None
    ) -> bool:
        """Return True when the seller's submissions go straight to ACTIVE_VERIFIED."""

        state = await self.get_tier(seller_id, session=session)
        if state.bypasses_assessment and not state.grants_bypass:
            logger.warning(
                "Ignoring bypass flag without elevated tier",
                seller_id=seller_id,
                tier_level=state.tier_level.value,
            )
        return state.grants_bypass

    async def set_tier(
        self,
        seller_id: str,
        tier_level: TierLevel | str,
        *,
        bypasses_assessment: Optional[bool] = None,
        actor_id: str = "system",
    ) -> SellerTierState:
        """Administrative toggle for a seller's tier.

        ``bypasses_assessment`` defaults to whether the tier is elevated. Setting
        a tier to its current value writes nothing.
        """

        context = ErrorContext(operation="set_tier", seller_id=seller_id)
        if not seller_id:
            raise ValidationError("seller_id is required", context)
        try:
            level = TierLevel(tier_level)
        except ValueError as exc:
            raise ValidationError(f"Unknown tier level {tier_level!r}", context) from exc

        bypass = level in ELEVATED_TIERS if bypasses_assessment is None else bypasses_assessment
        if bypass and level not in ELEVATED_TIERS:
            raise ValidationError(
                f"Tier {level.value} cannot bypass assessment",
                context,
                recovery_suggestions=["Grant trusted_brand or premium_outlet to enable bypass"],
            )

        async with self._session_factory() as session:
            repo = SellerTierRepository(session)
            existing = await repo.get_by_seller(seller_id)
            previous = _build_state(existing) if existing else SellerTierState(seller_id=seller_id)

            if previous.tier_level == level and previous.bypasses_assessment == bypass:
                logger.debug("Seller tier unchanged", seller_id=seller_id, tier_level=level.value)
                return previous

            tier = await repo.upsert_tier(
                seller_id=seller_id,
                tier_level=level,
                bypasses_assessment=bypass,
                updated_by=actor_id,
            )
            await session.commit()
            state = _build_state(tier)

        logger.info(
            "Seller tier changed",
            seller_id=seller_id,
            actor_id=actor_id,
            previous_tier=previous.tier_level.value,
            tier_level=level.value,
            bypasses_assessment=bypass,
        )
        if self._event_bus is not None:
            await self._event_bus.publish(
                SellerTierChanged(
                    seller_id=seller_id,
                    previous_tier=previous.tier_level,
                    tier_level=level,
                    previous_bypass=previous.bypasses_assessment,
                    bypasses_assessment=bypass,
                    actor_id=actor_id,
                )
            )
        return state
