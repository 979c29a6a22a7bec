"""Repository helpers for database interactions."""

from .assessment_events import AssessmentEventRepository
from .catalog import CatalogRepository
from .listings import ListingRepository
from .seller_tiers import SellerTierRepository

__all__ = [
    "AssessmentEventRepository",
    "CatalogRepository",
    "ListingRepository",
    "SellerTierRepository",
]
