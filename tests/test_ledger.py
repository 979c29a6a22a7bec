from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from conftest import listing_payload
from db.models import AssessmentEvent
from services.ledger import LedgerEntry, ReasonLedger, replay
from workflow import ListingStatus, ReviewStage

T0 = datetime(2026, 2, 1, 8, 0, tzinfo=timezone.utc)


def entry(from_state, to_state, minutes, **kwargs):
    return LedgerEntry(
        listing_id="L-1",
        from_state=from_state,
        to_state=to_state,
        stage=kwargs.get("stage"),
        actor_id=kwargs.get("actor_id", "reviewer"),
        reason=kwargs.get("reason"),
        occurred_at=T0 + timedelta(minutes=minutes),
    )


def test_replay_reconstructs_path():
    entries = [
        entry(None, ListingStatus.PENDING_DIGITAL_REVIEW, 0),
        entry(ListingStatus.PENDING_DIGITAL_REVIEW, ListingStatus.FOR_REVISION, 1, reason="Blurry"),
        entry(ListingStatus.FOR_REVISION, ListingStatus.PENDING_DIGITAL_REVIEW, 2),
    ]

    assert replay(entries) == [
        ListingStatus.PENDING_DIGITAL_REVIEW,
        ListingStatus.FOR_REVISION,
        ListingStatus.PENDING_DIGITAL_REVIEW,
    ]


def test_replay_detects_gaps_and_illegal_hops():
    with pytest.raises(ValueError):
        replay(
            [
                entry(None, ListingStatus.PENDING_DIGITAL_REVIEW, 0),
                entry(ListingStatus.WAITING_FOR_SAMPLE, ListingStatus.IN_QUALITY_REVIEW, 1),
            ]
        )
    with pytest.raises(ValueError):
        replay([entry(None, ListingStatus.WAITING_FOR_SAMPLE, 0)])
    with pytest.raises(ValueError):
        replay(
            [
                entry(None, ListingStatus.PENDING_DIGITAL_REVIEW, 0),
                entry(ListingStatus.PENDING_DIGITAL_REVIEW, ListingStatus.ACTIVE_VERIFIED, 1),
            ]
        )


async def test_history_is_ordered_and_restartable(engine, session_factory):
    state = await engine.submit("seller-1", listing_payload())
    history = await engine.history(state.id)

    first = await history.to_list()
    await engine.approve_for_sample_submission(state.id)
    second = [item async for item in history]

    assert len(first) == 1
    assert len(second) == 2
    assert second[0] == first[0]
    assert second[1].from_state is ListingStatus.PENDING_DIGITAL_REVIEW
    assert second[1].occurred_at > second[0].occurred_at
    assert second[1].occurred_at.tzinfo is not None


async def test_append_commits_on_its_own(engine, session_factory):
    state = await engine.submit("seller-1", listing_payload())
    ledger = ReasonLedger(session_factory=session_factory)

    written = await ledger.append(
        LedgerEntry(
            listing_id=state.id,
            from_state=ListingStatus.PENDING_DIGITAL_REVIEW,
            to_state=ListingStatus.WAITING_FOR_SAMPLE,
            stage=ReviewStage.DIGITAL,
            actor_id="importer",
            reason=None,
            occurred_at=state.submitted_at + timedelta(hours=1),
        )
    )

    assert written.id is not None
    with pytest.raises(ValueError):
        await ledger.append(written)
    assert len(await ledger.history(state.id).to_list()) == 2


async def test_ledger_rows_are_immutable(engine, session_factory):
    state = await engine.submit("seller-1", listing_payload())

    async with session_factory() as session:
        row = (
            await session.execute(
                select(AssessmentEvent).where(AssessmentEvent.listing_id == state.id)
            )
        ).scalar_one()
        row.reason = "rewritten"
        with pytest.raises(RuntimeError):
            await session.flush()
        await session.rollback()

    async with session_factory() as session:
        row = (
            await session.execute(
                select(AssessmentEvent).where(AssessmentEvent.listing_id == state.id)
            )
        ).scalar_one()
        await session.delete(row)
        with pytest.raises(RuntimeError):
            await session.flush()
        await session.rollback()

    entries = await (await engine.history(state.id)).to_list()
    assert len(entries) == 1
    assert entries[0].reason is None
