"""Pydantic schemas for API payloads and responses."""

from .listings import (
    AssessmentEventResponse,
    ListingHistoryResponse,
    ListingPayload,
    ListingResponse,
    ListingsResponse,
    LogisticsNoteRequest,
    ResubmitListingRequest,
    ReviewDecisionRequest,
    SampleReceivedRequest,
    SubmitListingRequest,
    VariantSchema,
)
from .seller_tiers import CatalogEntryResponse, SellerTierResponse, SellerTierUpdate

__all__ = [
    "AssessmentEventResponse",
    "CatalogEntryResponse",
    "ListingHistoryResponse",
    "ListingPayload",
    "ListingResponse",
    "ListingsResponse",
    "LogisticsNoteRequest",
    "ResubmitListingRequest",
    "ReviewDecisionRequest",
    "SampleReceivedRequest",
    "SellerTierResponse",
    "SellerTierUpdate",
    "SubmitListingRequest",
    "VariantSchema",
]
