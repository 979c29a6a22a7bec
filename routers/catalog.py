"""Read access to the storefront catalog projection."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from schemas import CatalogEntryResponse
from services.catalog_publisher import CatalogPublisher

router = APIRouter(prefix="/catalog", tags=["catalog"])


def _get_publisher(request: Request) -> CatalogPublisher:
    publisher = getattr(request.app.state, "catalog_publisher", None)
    if publisher is None:
        raise HTTPException(status_code=503, detail="Catalog publisher is not available")
    return publisher


@router.get("/{listing_id}", response_model=CatalogEntryResponse)
async def get_catalog_entry(request: Request, listing_id: str) -> CatalogEntryResponse:
    entry = await _get_publisher(request).get_entry(listing_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"No catalog entry for listing {listing_id}")
    return CatalogEntryResponse.model_validate(entry, from_attributes=True)
