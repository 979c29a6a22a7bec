"""Keeps the storefront catalog in step with listing assessment outcomes."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from loguru import logger
from prometheus_client import Counter, Histogram
from sqlalchemy.ext.asyncio import async_sessionmaker

from db.models import CatalogEntry
from events import ListingStatusChanged
from repositories import CatalogRepository, ListingRepository
from services.event_bus import EventBus
from workflow import ListingStatus


CATALOG_SYNC_COUNTER = Counter(
    "catalog_sync_events_total",
    "Count of catalog projection updates",
    labelnames=["status"],
)
CATALOG_SYNC_DURATION = Histogram(
    "catalog_sync_duration_seconds",
    "Latency of catalog projection updates",
    labelnames=["status"],
)

APPROVAL_BY_STATUS = {
    ListingStatus.ACTIVE_VERIFIED: "approved",
    ListingStatus.REJECTED: "rejected",
    ListingStatus.FOR_REVISION: "reclassified",
}


def approval_status_for(status: ListingStatus) -> str:
    return APPROVAL_BY_STATUS.get(status, "pending")


@dataclass(slots=True)
class CatalogEntryState:
    listing_id: str
    seller_id: str
    approval_status: str
    rejection_reason: Optional[str]
    published_at: Optional[datetime]
    updated_at: datetime


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _build_state(entry: CatalogEntry) -> CatalogEntryState:
    return CatalogEntryState(
        listing_id=entry.listing_id,
        seller_id=entry.seller_id,
        approval_status=entry.approval_status,
        rejection_reason=entry.rejection_reason,
        published_at=_as_utc(entry.published_at),
        updated_at=_as_utc(entry.updated_at),
    )


class CatalogPublisher:
    """Subscriber that projects committed listing transitions into the catalog.

    The projection is rebuilt from the listing row rather than the event
    payload, so events handled out of order still converge on the current
    status.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker,
        event_bus: EventBus | None = None,
    ) -> None:
        self._session_factory = session_factory
        if event_bus is not None:
            event_bus.subscribe(ListingStatusChanged, self.handle)

    async def handle(self, event: ListingStatusChanged) -> None:
        status_label = "success"
        started = time.perf_counter()
        try:
            await self._sync(event)
        except Exception:
            status_label = "error"
            raise
        finally:
            CATALOG_SYNC_COUNTER.labels(status=status_label).inc()
            CATALOG_SYNC_DURATION.labels(status=status_label).observe(
                time.perf_counter() - started
            )

    async def _sync(self, event: ListingStatusChanged) -> None:
        async with self._session_factory() as session:
            listing = await ListingRepository(session).get_by_id(event.listing_id)
            if listing is None:
                logger.warning("Catalog sync skipped; listing missing", listing_id=event.listing_id)
                return

            approval = approval_status_for(listing.status)
            reason = listing.rejection_reason if approval in ("rejected", "reclassified") else None
            published_at = listing.verified_at if listing.status is ListingStatus.ACTIVE_VERIFIED else None

            await CatalogRepository(session).upsert_entry(
                listing_id=listing.id,
                seller_id=listing.seller_id,
                approval_status=approval,
                rejection_reason=reason,
                published_at=published_at,
            )
            await session.commit()

        logger.info(
            "Catalog entry synced",
            listing_id=event.listing_id,
            approval_status=approval,
            published=published_at is not None,
        )

    async def get_entry(self, listing_id: str) -> Optional[CatalogEntryState]:
        async with self._session_factory() as session:
            entry = await CatalogRepository(session).get_by_listing(listing_id)
            return _build_state(entry) if entry else None
