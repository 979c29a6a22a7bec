"""API endpoints for administering seller trust tiers."""

from __future__ import annotations

from fastapi import APIRouter, Header, HTTPException, Request

from routers.listings import raise_http
from schemas import SellerTierResponse, SellerTierUpdate
from services.assessment import SYSTEM_ACTOR
from services.tier_policy import TierPolicy
from utils.error_handling import AssessmentError

router = APIRouter(prefix="/seller-tiers", tags=["seller-tiers"])


def _get_tier_policy(request: Request) -> TierPolicy:
    policy = getattr(request.app.state, "tier_policy", None)
    if policy is None:
        raise HTTPException(status_code=503, detail="Tier policy is not available")
    return policy


@router.get("/{seller_id}", response_model=SellerTierResponse)
async def get_seller_tier(request: Request, seller_id: str) -> SellerTierResponse:
    state = await _get_tier_policy(request).get_tier(seller_id)
    return SellerTierResponse.model_validate(state, from_attributes=True)


@router.put("/{seller_id}", response_model=SellerTierResponse)
async def set_seller_tier(
    request: Request,
    seller_id: str,
    payload: SellerTierUpdate,
    actor_id: str = Header(SYSTEM_ACTOR, alias="X-Actor-Id"),
) -> SellerTierResponse:
    policy = _get_tier_policy(request)
    try:
        state = await policy.set_tier(
            seller_id,
            payload.tier_level,
            bypasses_assessment=payload.bypasses_assessment,
            actor_id=actor_id,
        )
    except AssessmentError as exc:
        raise_http(exc)
    return SellerTierResponse.model_validate(state, from_attributes=True)
