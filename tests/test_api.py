import httpx
import pytest
from fastapi import FastAPI

from conftest import listing_payload
from routers import catalog, listings, monitoring, seller_tiers
from services.assessment import AssessmentEngine, ResubmissionPolicy
from services.catalog_publisher import CatalogPublisher
from services.event_bus import EventBus
from services.tier_policy import TierPolicy


@pytest.fixture()
async def app_state(session_factory):
    event_bus = EventBus()
    await event_bus.start()
    tier_policy = TierPolicy(session_factory=session_factory, event_bus=event_bus)
    publisher = CatalogPublisher(session_factory=session_factory, event_bus=event_bus)
    engine = AssessmentEngine(
        session_factory=session_factory,
        tier_policy=tier_policy,
        event_bus=event_bus,
        resubmission_policy=ResubmissionPolicy.RESTART,
    )

    app = FastAPI()
    for module in (listings, seller_tiers, catalog, monitoring):
        app.include_router(module.router)
    app.state.event_bus = event_bus
    app.state.tier_policy = tier_policy
    app.state.catalog_publisher = publisher
    app.state.assessment_engine = engine

    yield app
    await event_bus.stop()


@pytest.fixture()
async def client(app_state):
    transport = httpx.ASGITransport(app=app_state)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def submit(client, seller_id="seller-1", **overrides):
    response = await client.post(
        "/listings", json={"seller_id": seller_id, "listing": listing_payload(**overrides)}
    )
    assert response.status_code == 201, response.text
    return response.json()


async def test_submit_and_review_flow(client, app_state):
    listing = await submit(client)
    assert listing["status"] == "PENDING_DIGITAL_REVIEW"
    assert listing["base_price"] == "1299.50"
    assert "approve_for_sample_submission" in listing["allowed_commands"]

    listing_id = listing["id"]
    response = await client.post(
        f"/listings/{listing_id}/approve-for-sample", headers={"X-Actor-Id": "reviewer-7"}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "WAITING_FOR_SAMPLE"

    response = await client.put(
        f"/listings/{listing_id}/logistics-note", json={"note": "Courier booked"}
    )
    assert response.json()["logistics_note"] == "Courier booked"

    response = await client.post(f"/listings/{listing_id}/sample-received")
    assert response.json()["status"] == "IN_QUALITY_REVIEW"

    response = await client.post(f"/listings/{listing_id}/pass-quality-check")
    assert response.json()["status"] == "ACTIVE_VERIFIED"

    response = await client.get(f"/listings/{listing_id}/history")
    events = response.json()["events"]
    assert [event["to_state"] for event in events] == [
        "PENDING_DIGITAL_REVIEW",
        "WAITING_FOR_SAMPLE",
        "IN_QUALITY_REVIEW",
        "ACTIVE_VERIFIED",
    ]
    assert events[1]["actor_id"] == "reviewer-7"
    assert events[1]["stage"] == "digital"

    await app_state.state.event_bus.drain()
    response = await client.get(f"/catalog/{listing_id}")
    assert response.status_code == 200
    assert response.json()["approval_status"] == "approved"


async def test_error_mapping(client):
    response = await client.get("/listings/missing")
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "NotFoundError"

    listing_id = (await submit(client))["id"]
    response = await client.post(f"/listings/{listing_id}/reject", json={"reason": "  "})
    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["category"] == "validation"
    assert detail["recoverable"] is True
    assert detail["context"]["listing_id"] == listing_id

    response = await client.post(f"/listings/{listing_id}/pass-quality-check")
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["error"] == "InvalidTransitionError"
    assert detail["context"]["current_status"] == "PENDING_DIGITAL_REVIEW"
    assert detail["recovery_suggestions"]

    response = await client.post(
        "/listings", json={"seller_id": "seller-1", "listing": listing_payload(images=[])}
    )
    assert response.status_code == 422
    assert response.json()["detail"]["errors"]


async def test_revision_and_resubmission(client):
    listing_id = (await submit(client))["id"]

    response = await client.post(
        f"/listings/{listing_id}/request-revision",
        json={"reason": "Add measurements", "stage": "digital"},
    )
    assert response.json()["status"] == "FOR_REVISION"
    assert response.json()["allowed_commands"] == ["resubmit"]

    response = await client.post(
        f"/listings/{listing_id}/resubmit",
        json={"seller_id": "seller-1", "listing": listing_payload(description="Chest 52cm")},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "PENDING_DIGITAL_REVIEW"
    assert body["description"] == "Chest 52cm"


async def test_listing_filters(client):
    first = await submit(client, seller_id="seller-1")
    await submit(client, seller_id="seller-2")

    response = await client.get("/listings", params={"seller_id": "seller-1"})
    body = response.json()
    assert body["total"] == 1
    assert body["items"][0]["id"] == first["id"]

    response = await client.get("/listings", params={"status": "ACTIVE_VERIFIED"})
    assert response.json()["total"] == 0

    response = await client.get("/listings", params={"status": "approved"})
    assert response.status_code == 422


async def test_seller_tier_endpoints(client):
    response = await client.get("/seller-tiers/brand-1")
    assert response.json()["tier_level"] == "standard"

    response = await client.put(
        "/seller-tiers/brand-1",
        json={"tier_level": "trusted_brand"},
        headers={"X-Actor-Id": "admin-1"},
    )
    assert response.status_code == 200
    assert response.json()["bypasses_assessment"] is True
    assert response.json()["updated_by"] == "admin-1"

    response = await client.put(
        "/seller-tiers/seller-9", json={"tier_level": "standard", "bypasses_assessment": True}
    )
    assert response.status_code == 422

    listing = await submit(client, seller_id="brand-1")
    assert listing["status"] == "ACTIVE_VERIFIED"
    assert listing["verified_at"] == listing["submitted_at"]


async def test_monitoring_endpoints(client):
    await submit(client)

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "assessment_commands_total" in response.text

    response = await client.get("/health")
    assert response.json() == {"status": "ok", "engine": True, "event_bus": True}


async def test_catalog_entry_missing(client):
    response = await client.get("/catalog/unknown")
    assert response.status_code == 404
