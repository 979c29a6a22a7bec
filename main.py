from contextlib import asynccontextmanager
from fastapi import FastAPI
from routers import catalog, listings, monitoring, seller_tiers
from db import init_db, close_db, get_session_factory
from services.assessment import AssessmentEngine
from services.catalog_publisher import CatalogPublisher
from services.event_bus import EventBus
from services.ledger import ReasonLedger
from services.tier_policy import TierPolicy
import logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown events"""
    logger = logging.getLogger(__name__)

    event_bus: EventBus | None = None

    try:
        logger.info("Initializing database...")
        await init_db()
        session_factory = get_session_factory()

        event_bus = EventBus()
        await event_bus.start()
        catalog_publisher = CatalogPublisher(
            session_factory=session_factory,
            event_bus=event_bus,
        )
        tier_policy = TierPolicy(session_factory=session_factory, event_bus=event_bus)
        engine = AssessmentEngine(
            session_factory=session_factory,
            tier_policy=tier_policy,
            ledger=ReasonLedger(session_factory=session_factory),
            event_bus=event_bus,
        )
        logger.info(
            "Assessment engine initialized (resubmission policy: %s)",
            engine.resubmission_policy.value,
        )

        app.state.event_bus = event_bus
        app.state.catalog_publisher = catalog_publisher
        app.state.tier_policy = tier_policy
        app.state.assessment_engine = engine

        logger.info("Application startup completed successfully")

        yield

    except Exception as e:
        logger.error(f"Application startup failed: {e}")
        raise
    finally:
        logger.info("Application shutdown initiated...")

        bus = getattr(app.state, "event_bus", None) or event_bus
        if bus:
            try:
                await bus.stop()
                logger.info("Event bus stopped successfully")
            except Exception as e:
                logger.error(f"Error stopping event bus: {e}")

        try:
            await close_db()
            logger.info("Database connections closed successfully")
        except Exception as e:
            logger.error(f"Error closing database: {e}")

        logger.info("Application shutdown completed")


app = FastAPI(title="Listing Assessment API", version="1.0.0", lifespan=lifespan)


@app.get("/")
async def root():
    return {
        "message": "Welcome to the Listing Assessment API",
        "endpoints": [
            "/listings",
            "/listings/{id}",
            "/listings/{id}/history",
            "/seller-tiers/{seller_id}",
            "/catalog/{listing_id}",
            "/metrics",
            "/health",
        ],
        "status": "operational",
    }


app.include_router(listings.router)
app.include_router(seller_tiers.router)
app.include_router(catalog.router)
app.include_router(monitoring.router)
