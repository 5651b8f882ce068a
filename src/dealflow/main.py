"""FastAPI application factory.

Creates the app with logging middleware, CORS, and a lifespan that wires the
deal workflow (catalog, overlay store, stage gate, payout scheduler,
controller, router, brief analysis) onto app.state.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.dealflow.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.dealflow.api.v1.router import router as v1_router
from src.dealflow.config import OverlayBackend, Settings, get_settings
from src.dealflow.core.redis import close_redis, get_redis_pool
from src.dealflow.deals.catalog import DealCatalog
from src.dealflow.deals.controller import DealController
from src.dealflow.deals.gate import StageGate
from src.dealflow.deals.overlay import (
    InMemoryOverlayStore,
    OverlayStore,
    PersistenceOverlay,
    RedisOverlayStore,
)
from src.dealflow.deals.payout import PayoutScheduler
from src.dealflow.deals.router import Router
from src.dealflow.deals.selection import InMemorySelection, SelectionProvider
from src.dealflow.services.brief_analysis import BriefAnalysisService


@dataclass
class DealWorkflow:
    """All deal workflow components, wired together."""

    controller: DealController
    router: Router
    scheduler: PayoutScheduler
    brief_analysis: BriefAnalysisService


def build_workflow(
    settings: Settings,
    store: OverlayStore | None = None,
    catalog: DealCatalog | None = None,
    selection: SelectionProvider | None = None,
) -> DealWorkflow:
    """Wire the deal workflow from settings.

    ``store`` and ``catalog`` override the configured backend and catalog file.
    """
    if catalog is None:
        catalog = DealCatalog.from_json_file(settings.DEAL_CATALOG_PATH)
    if store is None:
        if settings.OVERLAY_BACKEND == OverlayBackend.redis:
            store = RedisOverlayStore(get_redis_pool(), key=settings.OVERLAY_KEY)
        else:
            store = InMemoryOverlayStore()

    overlay = PersistenceOverlay(store, catalog)
    gate = StageGate(min_outreach_responses=settings.OUTREACH_MIN_RESPONSES)
    scheduler = PayoutScheduler(delay=settings.PAYOUT_SETTLEMENT_DELAY)
    controller = DealController(
        overlay,
        gate,
        scheduler,
        selection=selection if selection is not None else InMemorySelection(),
    )
    return DealWorkflow(
        controller=controller,
        router=Router(controller),
        scheduler=scheduler,
        brief_analysis=BriefAnalysisService(
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            base_url=settings.OPENAI_BASE_URL,
            timeout=settings.LLM_TIMEOUT,
            max_cache_size=settings.BRIEF_ANALYSIS_CACHE_SIZE,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire the workflow on startup, stop timers on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    workflow = build_workflow(settings)
    app.state.deal_controller = workflow.controller
    app.state.stage_router = workflow.router
    app.state.payout_scheduler = workflow.scheduler
    app.state.brief_analysis = workflow.brief_analysis
    log.info(
        "app.workflow_initialized",
        overlay_backend=settings.OVERLAY_BACKEND.value,
        min_outreach_responses=settings.OUTREACH_MIN_RESPONSES,
    )

    yield

    await workflow.scheduler.shutdown()
    if settings.OVERLAY_BACKEND == OverlayBackend.redis:
        await close_redis()
    log.info("app.shutdown_complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Dealflow API",
        version="0.1.0",
        description="Influencer advertising deal workflow with stage-gated progression",
        lifespan=lifespan,
    )

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (outermost -- logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router, prefix="/api/v1")

    return app


# Module-level app for uvicorn
app = create_app()
