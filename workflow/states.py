"""Assessment states and the closed transition table.

Listing lifecycle:
    PENDING_DIGITAL_REVIEW -> WAITING_FOR_SAMPLE -> IN_QUALITY_REVIEW -> ACTIVE_VERIFIED
    PENDING_DIGITAL_REVIEW / IN_QUALITY_REVIEW -> REJECTED | FOR_REVISION
    FOR_REVISION -> (resubmission) PENDING_DIGITAL_REVIEW | WAITING_FOR_SAMPLE | ACTIVE_VERIFIED

Trusted sellers skip the pipeline and enter ACTIVE_VERIFIED directly.
Any pair not present in the table is an illegal transition.
"""

from __future__ import annotations

import enum
from typing import Dict, FrozenSet, Optional


class ListingStatus(str, enum.Enum):
    """Workflow position of a listing. Values are the persisted tokens."""

    PENDING_DIGITAL_REVIEW = "PENDING_DIGITAL_REVIEW"
    WAITING_FOR_SAMPLE = "WAITING_FOR_SAMPLE"
    IN_QUALITY_REVIEW = "IN_QUALITY_REVIEW"
    FOR_REVISION = "FOR_REVISION"
    ACTIVE_VERIFIED = "ACTIVE_VERIFIED"
    REJECTED = "REJECTED"


class ReviewStage(str, enum.Enum):
    """Review phase that acted on a listing."""

    DIGITAL = "digital"
    PHYSICAL = "physical"


class TierLevel(str, enum.Enum):
    STANDARD = "standard"
    TRUSTED_BRAND = "trusted_brand"
    PREMIUM_OUTLET = "premium_outlet"


ELEVATED_TIERS: FrozenSet[TierLevel] = frozenset(
    {TierLevel.TRUSTED_BRAND, TierLevel.PREMIUM_OUTLET}
)

# Entry states for a brand-new listing (from_state is None in the ledger)
INITIAL_STATES: FrozenSet[ListingStatus] = frozenset(
    {ListingStatus.PENDING_DIGITAL_REVIEW, ListingStatus.ACTIVE_VERIFIED}
)

_TRANSITIONS: Dict[ListingStatus, FrozenSet[ListingStatus]] = {
    ListingStatus.PENDING_DIGITAL_REVIEW: frozenset(
        {
            ListingStatus.WAITING_FOR_SAMPLE,
            ListingStatus.REJECTED,
            ListingStatus.FOR_REVISION,
        }
    ),
    ListingStatus.WAITING_FOR_SAMPLE: frozenset({ListingStatus.IN_QUALITY_REVIEW}),
    ListingStatus.IN_QUALITY_REVIEW: frozenset(
        {
            ListingStatus.ACTIVE_VERIFIED,
            ListingStatus.REJECTED,
            ListingStatus.FOR_REVISION,
        }
    ),
    # Only reachable through resubmission
    ListingStatus.FOR_REVISION: frozenset(
        {
            ListingStatus.PENDING_DIGITAL_REVIEW,
            ListingStatus.WAITING_FOR_SAMPLE,
            ListingStatus.ACTIVE_VERIFIED,
        }
    ),
    # Terminal
    ListingStatus.ACTIVE_VERIFIED: frozenset(),
    ListingStatus.REJECTED: frozenset(),
}

# Review stage that owns each in-review status
_STAGE_BY_STATUS: Dict[ListingStatus, ReviewStage] = {
    ListingStatus.PENDING_DIGITAL_REVIEW: ReviewStage.DIGITAL,
    ListingStatus.WAITING_FOR_SAMPLE: ReviewStage.PHYSICAL,
    ListingStatus.IN_QUALITY_REVIEW: ReviewStage.PHYSICAL,
}


def allowed_targets(status: ListingStatus) -> FrozenSet[ListingStatus]:
    """Return the statuses reachable from ``status`` in one step."""
    return _TRANSITIONS[status]


def is_allowed(current: Optional[ListingStatus], target: ListingStatus) -> bool:
    if current is None:
        return target in INITIAL_STATES
    return target in _TRANSITIONS[current]


def is_terminal(status: ListingStatus) -> bool:
    return not _TRANSITIONS[status]


def stage_for_status(status: ListingStatus) -> Optional[ReviewStage]:
    """Review stage responsible for a listing in ``status``, if any."""
    return _STAGE_BY_STATUS.get(status)
