"""Assessment domain events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from workflow import ListingStatus, ReviewStage, TierLevel


@dataclass(slots=True, frozen=True)
class ListingStatusChanged:
    """Emitted after a listing transition has been committed."""

    listing_id: str
    seller_id: str
    from_status: Optional[ListingStatus]
    to_status: ListingStatus
    stage: Optional[ReviewStage]
    actor_id: str
    reason: Optional[str]
    occurred_at: datetime


@dataclass(slots=True, frozen=True)
class SellerTierChanged:
    """Emitted when an administrator changes a seller's trust tier."""

    seller_id: str
    previous_tier: TierLevel
    tier_level: TierLevel
    previous_bypass: bool
    bypasses_assessment: bool
    actor_id: str
    changed_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
