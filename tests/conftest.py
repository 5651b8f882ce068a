"""Shared fixtures for deal workflow tests.

Provides:
- A two-deal catalog and an in-memory overlay store
- StageGate, PayoutScheduler (long delay; tests fire settlements explicitly)
- DealController and Router wired over the in-memory overlay
- A recording renderer to observe which stage panels were drawn
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from src.dealflow.deals.catalog import DealCatalog
from src.dealflow.deals.controller import DealController
from src.dealflow.deals.gate import StageGate
from src.dealflow.deals.overlay import InMemoryOverlayStore, PersistenceOverlay
from src.dealflow.deals.payout import PayoutScheduler
from src.dealflow.deals.router import Router
from src.dealflow.deals.schemas import DealBase
from src.dealflow.deals.selection import InMemorySelection
from tests.factories import DEAL_ID, RecordingRenderer


@pytest.fixture
def catalog() -> DealCatalog:
    return DealCatalog(
        [
            DealBase(
                id=DEAL_ID,
                title="Spring skincare launch",
                brand="Lumea",
                platform="YouTube",
                due_date="2025-12-01",
            ),
            DealBase(id="deal_002", title="Fitness tracker review", brand="Pulsar"),
        ]
    )


@pytest.fixture
def store() -> InMemoryOverlayStore:
    return InMemoryOverlayStore()


@pytest.fixture
def overlay(store: InMemoryOverlayStore, catalog: DealCatalog) -> PersistenceOverlay:
    return PersistenceOverlay(store, catalog)


@pytest.fixture
def gate() -> StageGate:
    return StageGate()


@pytest_asyncio.fixture
async def scheduler():
    """Scheduler whose timers never fire on their own during a test."""
    payout_scheduler = PayoutScheduler(delay=60.0)
    yield payout_scheduler
    await payout_scheduler.shutdown()


@pytest.fixture
def selection() -> InMemorySelection:
    return InMemorySelection(["b1", "b2", "b3"])


@pytest.fixture
def controller(
    overlay: PersistenceOverlay,
    gate: StageGate,
    scheduler: PayoutScheduler,
    selection: InMemorySelection,
) -> DealController:
    return DealController(overlay, gate, scheduler, selection=selection)


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def stage_router(controller: DealController, renderer: RecordingRenderer) -> Router:
    return Router(controller, renderer=renderer)
