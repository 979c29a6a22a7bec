"""Listing assessment workflow states and transition rules."""

from .states import (
    ELEVATED_TIERS,
    INITIAL_STATES,
    ListingStatus,
    ReviewStage,
    TierLevel,
    allowed_targets,
    is_allowed,
    is_terminal,
    stage_for_status,
)

__all__ = [
    "ELEVATED_TIERS",
    "INITIAL_STATES",
    "ListingStatus",
    "ReviewStage",
    "TierLevel",
    "allowed_targets",
    "is_allowed",
    "is_terminal",
    "stage_for_status",
]
