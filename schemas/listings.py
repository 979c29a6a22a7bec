"""Pydantic schemas for listing submissions and assessment responses."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from workflow import ListingStatus, ReviewStage

_CURRENCY_MARKERS = ("₱", "PHP", "php", "Php")


def normalize_amount(value: Any) -> str:
    """Return a canonical, non-negative decimal string for a price."""

    if isinstance(value, bool):
        raise ValueError("price must be a number")
    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    elif isinstance(value, str):
        text = value.strip()
        for marker in _CURRENCY_MARKERS:
            text = text.replace(marker, "")
        text = text.replace(",", "").strip()
    else:
        raise ValueError("price must be a number")

    if not text:
        raise ValueError("price is required")
    try:
        amount = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"price {value!r} is not a number") from exc
    if not amount.is_finite():
        raise ValueError("price must be finite")
    if amount < 0:
        raise ValueError("price must not be negative")
    return str(amount)


class VariantSchema(BaseModel):
    """Canonical product variant."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)
    size: Optional[str] = None
    color: Optional[str] = None
    price: str
    stock: int = Field(0, ge=0)
    thumbnail: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_shape(cls, data: Any) -> Any:
        # Variants arrive either flat or with size/color nested under "attributes"
        if not isinstance(data, dict):
            return data
        flat = dict(data)
        attributes = flat.pop("attributes", None)
        if isinstance(attributes, dict):
            for key in ("size", "color"):
                if flat.get(key) is None and attributes.get(key) is not None:
                    flat[key] = attributes[key]
        if "name" not in flat:
            flat["name"] = flat.pop("variant_name", None) or flat.pop("label", None)
        if "thumbnail" not in flat:
            flat["thumbnail"] = flat.pop("thumbnail_url", None) or flat.pop("image", None)
        return flat

    @field_validator("price", mode="before")
    @classmethod
    def _normalize_price(cls, value: Any) -> str:
        return normalize_amount(value)


class ListingPayload(BaseModel):
    """Seller submission payload, normalised to one canonical shape."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    id: Optional[str] = Field(None, min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=512)
    category: str = Field(..., min_length=1, max_length=255)
    category_id: Optional[str] = None
    base_price: str = Field(..., alias="price")
    description: Optional[str] = None
    images: List[str] = Field(..., min_length=1)
    variants: List[VariantSchema] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _canonical_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        canonical = dict(data)

        if "price" not in canonical and "base_price" in canonical:
            canonical["price"] = canonical.pop("base_price")

        category = canonical.get("category")
        if isinstance(category, dict):
            canonical["category"] = category.get("name") or category.get("label")
            if canonical.get("category_id") is None and category.get("id") is not None:
                canonical["category_id"] = str(category["id"])

        images = canonical.get("images")
        if images is None and canonical.get("image"):
            images = [canonical["image"]]
        if isinstance(images, str):
            images = [images]
        if isinstance(images, list):
            images = [item.strip() for item in images if isinstance(item, str) and item.strip()]
        canonical["images"] = images
        canonical.pop("image", None)
        return canonical

    @field_validator("base_price", mode="before")
    @classmethod
    def _normalize_price(cls, value: Any) -> str:
        return normalize_amount(value)

    def content(self) -> Dict[str, Any]:
        """Listing fields as stored, without the caller-supplied id."""
        return {
            "name": self.name,
            "category": self.category,
            "category_id": self.category_id,
            "base_price": self.base_price,
            "description": self.description,
            "images": list(self.images),
            "variants": [variant.model_dump() for variant in self.variants],
        }


class SubmitListingRequest(BaseModel):
    seller_id: str = Field(..., min_length=1, max_length=64)
    listing: Dict[str, Any]


class ResubmitListingRequest(BaseModel):
    seller_id: str = Field(..., min_length=1, max_length=64)
    listing: Dict[str, Any]


class ReviewDecisionRequest(BaseModel):
    """Body for reject and request-revision commands.

    ``reason`` is checked by the engine so that blank reasons surface as the
    workflow's own validation error.
    """

    reason: str = ""
    stage: Optional[ReviewStage] = None


class SampleReceivedRequest(BaseModel):
    logistics_note: Optional[str] = Field(None, max_length=512)


class LogisticsNoteRequest(BaseModel):
    note: str = Field(..., max_length=512)


class ListingResponse(BaseModel):
    id: str
    seller_id: str
    name: str
    category: str
    category_id: Optional[str] = None
    base_price: str
    description: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    variants: List[VariantSchema] = Field(default_factory=list)
    status: ListingStatus
    version: int
    submitted_at: datetime
    approved_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    revision_requested_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    rejection_stage: Optional[ReviewStage] = None
    logistics_note: Optional[str] = None
    allowed_commands: List[str] = Field(default_factory=list)

    model_config = {
        "from_attributes": True,
        "populate_by_name": True,
    }


class ListingsResponse(BaseModel):
    total: int
    items: List[ListingResponse]


class AssessmentEventResponse(BaseModel):
    id: int
    listing_id: str
    from_state: Optional[ListingStatus] = None
    to_state: ListingStatus
    stage: Optional[ReviewStage] = None
    actor_id: str
    reason: Optional[str] = None
    occurred_at: datetime

    model_config = {"from_attributes": True}


class ListingHistoryResponse(BaseModel):
    listing_id: str
    events: List[AssessmentEventResponse]
