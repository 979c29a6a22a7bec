import os
from dataclasses import dataclass
from typing import Optional

from mcp.server.fastmcp import FastMCP
from sqlalchemy.ext.asyncio import async_sessionmaker

from db import build_engine
from db.models import Base
from services.assessment import AssessmentEngine, ListingState
from services.catalog_publisher import CatalogPublisher
from services.event_bus import EventBus
from services.ledger import ReasonLedger
from services.tier_policy import TierPolicy
from utils.error_handling import AssessmentError


@dataclass
class _Components:
    engine: AssessmentEngine
    event_bus: EventBus


# The MCP server runs on its own event loop, so it owns a separate engine
_components: Optional[_Components] = None


async def get_components() -> _Components:
    """Get or create the assessment components used by MCP tools."""
    global _components
    if _components is None:
        db_engine = build_engine()
        async with db_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        event_bus = EventBus()
        await event_bus.start()
        CatalogPublisher(session_factory=session_factory, event_bus=event_bus)
        tier_policy = TierPolicy(session_factory=session_factory, event_bus=event_bus)
        engine = AssessmentEngine(
            session_factory=session_factory,
            tier_policy=tier_policy,
            ledger=ReasonLedger(session_factory=session_factory),
            event_bus=event_bus,
        )
        _components = _Components(engine=engine, event_bus=event_bus)
    return _components


def _listing_summary(state: ListingState) -> dict:
    return {
        "id": state.id,
        "seller_id": state.seller_id,
        "name": state.name,
        "category": state.category,
        "base_price": state.base_price,
        "status": state.status.value,
        "version": state.version,
        "submitted_at": state.submitted_at.isoformat(),
        "rejection_reason": state.rejection_reason,
        "allowed_commands": state.allowed_commands,
    }


def _failure(exc: AssessmentError) -> dict:
    return {"success": False, **exc.to_dict()}


def create_mcp_server(host: Optional[str] = None, port: Optional[int] = None) -> FastMCP:
    resolved_host = host or os.getenv("MCP_HOST", "0.0.0.0")
    resolved_port = port if port is not None else int(os.getenv("MCP_PORT", "8001"))

    server = FastMCP(
        name="Listing Assessment MCP",
        instructions="Tools for working the product listing review queue: browse listings, read their assessment history and record review decisions.",
        host=resolved_host,
        port=resolved_port,
    )

    @server.tool(
        name="list_listings",
        description="List product listings, optionally filtered by seller and workflow status.",
    )
    async def list_listings(seller_id: Optional[str] = None, status: Optional[str] = None) -> dict:
        components = await get_components()
        try:
            states = await components.engine.load_all(seller_id, status=status)
        except AssessmentError as exc:
            return _failure(exc)
        return {
            "success": True,
            "total": len(states),
            "data": [_listing_summary(state) for state in states],
        }

    @server.tool(
        name="listing_history",
        description="Return the assessment ledger of a listing in chronological order.",
    )
    async def listing_history(listing_id: str) -> dict:
        if not listing_id:
            raise ValueError("listing_id is required")

        components = await get_components()
        try:
            history = await components.engine.history(listing_id)
        except AssessmentError as exc:
            return _failure(exc)
        entries = [
            {
                "from_state": entry.from_state.value if entry.from_state else None,
                "to_state": entry.to_state.value,
                "stage": entry.stage.value if entry.stage else None,
                "actor_id": entry.actor_id,
                "reason": entry.reason,
                "occurred_at": entry.occurred_at.isoformat(),
            }
            async for entry in history
        ]
        return {"success": True, "listing_id": listing_id, "data": entries}

    @server.tool(
        name="approve_for_sample",
        description="Pass digital review and ask the seller to send a physical sample.",
    )
    async def approve_for_sample(listing_id: str, actor_id: str = "mcp") -> dict:
        components = await get_components()
        try:
            state = await components.engine.approve_for_sample_submission(listing_id, actor_id=actor_id)
        except AssessmentError as exc:
            return _failure(exc)
        return {"success": True, "data": _listing_summary(state)}

    @server.tool(
        name="pass_quality_check",
        description="Pass physical quality review; the listing becomes purchasable.",
    )
    async def pass_quality_check(listing_id: str, actor_id: str = "mcp") -> dict:
        components = await get_components()
        try:
            state = await components.engine.pass_quality_check(listing_id, actor_id=actor_id)
        except AssessmentError as exc:
            return _failure(exc)
        return {"success": True, "data": _listing_summary(state)}

    @server.tool(
        name="reject_listing",
        description="Reject a listing under digital or quality review. A reason is required.",
    )
    async def reject_listing(
        listing_id: str,
        reason: str,
        stage: Optional[str] = None,
        actor_id: str = "mcp",
    ) -> dict:
        components = await get_components()
        try:
            state = await components.engine.reject_listing(listing_id, reason, stage, actor_id=actor_id)
        except AssessmentError as exc:
            return _failure(exc)
        return {"success": True, "data": _listing_summary(state)}

    @server.tool(
        name="request_revision",
        description="Return a listing to the seller for correction. A reason is required.",
    )
    async def request_revision(
        listing_id: str,
        reason: str,
        stage: Optional[str] = None,
        actor_id: str = "mcp",
    ) -> dict:
        components = await get_components()
        try:
            state = await components.engine.request_revision(listing_id, reason, stage, actor_id=actor_id)
        except AssessmentError as exc:
            return _failure(exc)
        return {"success": True, "data": _listing_summary(state)}

    return server


if __name__ == "__main__":
    create_mcp_server().run("streamable-http")
