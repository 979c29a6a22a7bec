"""Append-only reason ledger for listing assessments.

Every transition writes exactly one entry recording where the listing came
from, where it went, which review stage acted, who acted and why. Entries
are never changed once written, and the entries of one listing replay into
its complete path through the workflow, revision loops included.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable, List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import AssessmentEvent
from repositories import AssessmentEventRepository
from workflow import ListingStatus, ReviewStage, is_allowed


@dataclass(slots=True, frozen=True)
class LedgerEntry:
    """Immutable view of a single ledger row."""

    listing_id: str
    from_state: Optional[ListingStatus]
    to_state: ListingStatus
    stage: Optional[ReviewStage]
    actor_id: str
    reason: Optional[str]
    occurred_at: datetime
    id: Optional[int] = None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def entry_from_row(row: AssessmentEvent) -> LedgerEntry:
    return LedgerEntry(
        id=row.id,
        listing_id=row.listing_id,
        from_state=row.from_state,
        to_state=row.to_state,
        stage=row.stage,
        actor_id=row.actor_id,
        reason=row.reason,
        occurred_at=_as_utc(row.occurred_at),
    )


class LedgerHistory:
    """Lazy, restartable history of one listing.

    Each ``async for`` opens a fresh session and streams rows in
    chronological order, so iterating twice yields the same entries plus
    anything appended in between.
    """

    def __init__(self, session_factory: async_sessionmaker, listing_id: str) -> None:
        self._session_factory = session_factory
        self.listing_id = listing_id

    async def __aiter__(self) -> AsyncIterator[LedgerEntry]:
        async with self._session_factory() as session:
            repo = AssessmentEventRepository(session)
            async for row in repo.stream_for_listing(self.listing_id):
                yield entry_from_row(row)

    async def to_list(self) -> List[LedgerEntry]:
        return [entry async for entry in self]


def replay(entries: Iterable[LedgerEntry]) -> List[ListingStatus]:
    """Reconstruct the status path from ledger entries.

    Raises ValueError when consecutive entries do not chain or a hop is not
    permitted by the transition table.
    """

    path: List[ListingStatus] = []
    current: Optional[ListingStatus] = None
    for entry in entries:
        if entry.from_state != current:
            raise ValueError(
                f"Ledger gap for {entry.listing_id}: expected from_state "
                f"{current.value if current else None}, got "
                f"{entry.from_state.value if entry.from_state else None}"
            )
        if not is_allowed(current, entry.to_state):
            raise ValueError(
                f"Ledger records illegal transition for {entry.listing_id}: "
                f"{current.value if current else None} -> {entry.to_state.value}"
            )
        path.append(entry.to_state)
        current = entry.to_state
    return path


class ReasonLedger:
    """Write-once audit trail of assessment transitions."""

    def __init__(self, *, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def append(
        self, entry: LedgerEntry, *, session: Optional[AsyncSession] = None
    ) -> LedgerEntry:
        """Persist ``entry``.

        With ``session`` the write joins the caller's transaction and the
        caller commits; without it the entry is committed on its own.
        """

        if session is not None:
            row = await self._insert(session, entry)
            return entry_from_row(row)

        async with self._session_factory() as own_session:
            row = await self._insert(own_session, entry)
            await own_session.commit()
            return entry_from_row(row)

    async def _insert(self, session: AsyncSession, entry: LedgerEntry) -> AssessmentEvent:
        if entry.id is not None:
            raise ValueError(f"Ledger entry {entry.id} has already been written")
        row = await AssessmentEventRepository(session).add_event(
            listing_id=entry.listing_id,
            from_state=entry.from_state,
            to_state=entry.to_state,
            stage=entry.stage,
            actor_id=entry.actor_id,
            reason=entry.reason,
            occurred_at=entry.occurred_at,
        )
        logger.debug(
            "Ledger entry appended",
            listing_id=entry.listing_id,
            from_state=entry.from_state.value if entry.from_state else None,
            to_state=entry.to_state.value,
            actor_id=entry.actor_id,
        )
        return row

    def history(self, listing_id: str) -> LedgerHistory:
        return LedgerHistory(self._session_factory, listing_id)
