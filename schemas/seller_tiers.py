"""Pydantic schemas for seller trust tiers and the catalog projection."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from workflow import TierLevel


class SellerTierUpdate(BaseModel):
    tier_level: TierLevel
    bypasses_assessment: Optional[bool] = None


class SellerTierResponse(BaseModel):
    seller_id: str
    tier_level: TierLevel
    bypasses_assessment: bool
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CatalogEntryResponse(BaseModel):
    listing_id: str
    seller_id: str
    approval_status: str
    rejection_reason: Optional[str] = None
    published_at: Optional[datetime] = None
    updated_at: datetime

    model_config = {"from_attributes": True}
