"""Event type definitions for inter-service communication."""

from .listings import ListingStatusChanged, SellerTierChanged

__all__ = ["ListingStatusChanged", "SellerTierChanged"]
