from datetime import datetime, timedelta, timezone
from typing import List

import pytest

pytest.importorskip("sqlalchemy")

from db import get_session_factory, init_db, reset_database_state  # noqa: E402
from services.assessment import AssessmentEngine, ResubmissionPolicy  # noqa: E402
from services.ledger import ReasonLedger  # noqa: E402
from services.tier_policy import TierPolicy  # noqa: E402


class StubEventBus:
    def __init__(self) -> None:
        self.subscriptions: List = []
        self.published = []

    def subscribe(self, event_type, handler):
        self.subscriptions.append((event_type, handler))

    async def publish(self, event):
        self.published.append(event)


class TickingClock:
    """Deterministic clock that advances one second per reading."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        value = self.current
        self.current += timedelta(seconds=1)
        return value


def listing_payload(**overrides) -> dict:
    payload = {
        "name": "Linen Shirt",
        "category": {"id": 12, "name": "Apparel"},
        "price": "₱1,299.50",
        "description": "Breathable summer shirt",
        "images": ["https://cdn.example.com/shirt-front.jpg"],
        "variants": [
            {
                "variant_name": "Small / White",
                "attributes": {"size": "S", "color": "White"},
                "price": "1299.50",
                "stock": 10,
            }
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
async def session_factory(tmp_path, monkeypatch):
    # File-backed so concurrent sessions use separate connections
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'assessments.db'}")
    await reset_database_state()
    await init_db()
    yield get_session_factory()
    await reset_database_state()


@pytest.fixture()
def bus():
    return StubEventBus()


@pytest.fixture()
def clock():
    return TickingClock()


@pytest.fixture()
def tier_policy(session_factory, bus):
    return TierPolicy(session_factory=session_factory, event_bus=bus)


@pytest.fixture()
def engine(session_factory, tier_policy, bus, clock):
    return AssessmentEngine(
        session_factory=session_factory,
        tier_policy=tier_policy,
        ledger=ReasonLedger(session_factory=session_factory),
        event_bus=bus,
        resubmission_policy=ResubmissionPolicy.RESTART,
        clock=clock,
    )
