"""
Feed Ranking API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Start the store HTTP client (Supabase / PostgREST)
  3. Build the feed service (collector, scorer, composer, page cache)
  4. Start the Kafka engagement consumer (if enabled)
  5. Expose Prometheus /metrics endpoint
"""
import logging

from contextlib import asynccontextmanager
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from trendfeed.config import settings
from trendfeed.telemetry import setup_tracing, instrument_app
from trendfeed.clients.engagement_consumer import EngagementConsumer
from trendfeed.clients.store_client import StoreClient
from trendfeed.feed_service import FeedService
from trendfeed.routers import feed, trending
from trendfeed.scoring import ScoringWeights
from trendfeed.trending_job import TrendingJob

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting Feed Ranking API (env=%s)", settings.environment)

    store = StoreClient()
    await store.start()
    app.state.feed_service = FeedService.from_settings(store)
    app.state.trending_job = TrendingJob(
        store,
        ScoringWeights.from_settings(settings),
        threshold=settings.trending_threshold,
    )

    consumer = None
    if settings.engagement_listener_enabled:
        consumer = EngagementConsumer(app.state.feed_service)
        await consumer.start()

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    if consumer:
        await consumer.stop()
    await store.stop()


app = FastAPI(
    title="Feed Ranking API",
    description=(
        "Blended social feed: friends, trending posts and competition "
        "entries, ranked by time-decayed engagement."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(feed.router, prefix="/feed", tags=["Feed"])
app.include_router(trending.router, prefix="/trending", tags=["Trending"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
