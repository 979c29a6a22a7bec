"""Repository for the append-only assessment ledger."""

from __future__ import annotations

from datetime import datetime
from typing import AsyncIterator, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import AssessmentEvent
from workflow import ListingStatus, ReviewStage


class AssessmentEventRepository:
    """Insert and read ledger rows; entries are never updated or removed."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_event(
        self,
        *,
        listing_id: str,
        from_state: Optional[ListingStatus],
        to_state: ListingStatus,
        stage: Optional[ReviewStage],
        actor_id: str,
        reason: Optional[str],
        occurred_at: datetime,
    ) -> AssessmentEvent:
        event = AssessmentEvent(
            listing_id=listing_id,
            from_state=from_state,
            to_state=to_state,
            stage=stage,
            actor_id=actor_id,
            reason=reason,
            occurred_at=occurred_at,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    def _history_stmt(self, listing_id: str):
        return (
            select(AssessmentEvent)
            .where(AssessmentEvent.listing_id == listing_id)
            .order_by(AssessmentEvent.occurred_at.asc(), AssessmentEvent.id.asc())
        )

    async def stream_for_listing(self, listing_id: str) -> AsyncIterator[AssessmentEvent]:
        result = await self.session.stream_scalars(self._history_stmt(listing_id))
        async for event in result:
            yield event
