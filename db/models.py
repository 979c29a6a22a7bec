"""SQLAlchemy models for product listings under assessment."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Text, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import JSON, Boolean

from workflow import ListingStatus, ReviewStage, TierLevel


class Base(DeclarativeBase):
    """Base declarative class for SQLAlchemy models."""


JSONType = JSONB().with_variant(JSON(), "sqlite")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _token_enum(enum_cls, name: str) -> Enum:
    # Persist enum values (the exact tokens), guarded by a CHECK constraint
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=32,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class ProductListing(Base):
    """A seller's product listing and its position in the assessment workflow."""

    __tablename__ = "product_listings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    seller_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    category: Mapped[str] = mapped_column(String(255), nullable=False)
    category_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    base_price: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    images: Mapped[List[str]] = mapped_column(JSONType, nullable=False)
    variants: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    status: Mapped[ListingStatus] = mapped_column(
        _token_enum(ListingStatus, "listing_status"), index=True, nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    revision_requested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_stage: Mapped[Optional[ReviewStage]] = mapped_column(
        _token_enum(ReviewStage, "review_stage"), nullable=True
    )
    logistics_note: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )


class AssessmentEvent(Base):
    """Immutable ledger entry for one listing state transition."""

    __tablename__ = "assessment_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    listing_id: Mapped[str] = mapped_column(
        ForeignKey("product_listings.id"), index=True, nullable=False
    )
    from_state: Mapped[Optional[ListingStatus]] = mapped_column(
        _token_enum(ListingStatus, "event_from_state"), nullable=True
    )
    to_state: Mapped[ListingStatus] = mapped_column(
        _token_enum(ListingStatus, "event_to_state"), nullable=False
    )
    stage: Mapped[Optional[ReviewStage]] = mapped_column(
        _token_enum(ReviewStage, "event_stage"), nullable=True
    )
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), index=True, nullable=False
    )


@event.listens_for(AssessmentEvent, "before_update")
def _reject_ledger_update(mapper, connection, target) -> None:
    raise RuntimeError(f"Ledger entry {target.id} is immutable")


@event.listens_for(AssessmentEvent, "before_delete")
def _reject_ledger_delete(mapper, connection, target) -> None:
    raise RuntimeError(f"Ledger entry {target.id} cannot be deleted")


class SellerTier(Base):
    """Trust tier of a seller; decides whether submissions skip assessment."""

    __tablename__ = "seller_tiers"

    seller_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tier_level: Mapped[TierLevel] = mapped_column(
        _token_enum(TierLevel, "tier_level"), default=TierLevel.STANDARD, nullable=False
    )
    bypasses_assessment: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    def update_timestamp(self) -> None:
        self.updated_at = _utcnow()


class CatalogEntry(Base):
    """Storefront-facing projection of a listing's approval outcome."""

    __tablename__ = "catalog_entries"

    listing_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    seller_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    approval_status: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    def update_timestamp(self) -> None:
        self.updated_at = _utcnow()
