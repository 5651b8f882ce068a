"""Tests for the stage router -- tokens, clamped navigation, next/previous.

Tests cover:
- route_token / parse_route: slug formatting, authoritative index, clamping
- navigate: renders allowed stages, redirects locked ones to the ceiling
- Last rendered stage persisted and resumed
- next: blocked with missing preconditions, advances, completes at payout
- previous: steps back, never below 1
- Rendering the payout stage schedules the settlement
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from src.dealflow.deals.controller import DealController
from src.dealflow.deals.overlay import PersistenceOverlay
from src.dealflow.deals.payout import PayoutScheduler
from src.dealflow.deals.router import Router, parse_route, route_token
from src.dealflow.deals.schemas import Stage, StageStatus
from tests.factories import DEAL_ID, SCENARIO_D_PATCH, RecordingRenderer


# ── Tokens ──────────────────────────────────────────────────────────────────


class TestRouteTokens:
    """Tests for route_token and parse_route."""

    def test_token_format(self) -> None:
        assert route_token(1) == "#/1-select"
        assert route_token(4) == "#/4-outreach"
        assert route_token(9) == "#/9-payout"

    def test_token_clamped(self) -> None:
        assert route_token(0) == "#/1-select"
        assert route_token(42) == "#/9-payout"

    @pytest.mark.parametrize(
        ("token", "expected"),
        [
            ("#/3-email", 3),
            ("#/3-whatever", 3),
            ("#/7", 7),
            ("/5-contract", 5),
            ("6", 6),
            ("#/0-select", 1),
            ("#/99-x", 9),
            ("", 1),
            (None, 1),
            ("#/brief", 1),
        ],
    )
    def test_parse(self, token, expected) -> None:
        assert parse_route(token) == expected


# ── navigate ────────────────────────────────────────────────────────────────


class TestNavigate:
    """Tests for Router.navigate."""

    @pytest.mark.asyncio
    async def test_locked_stage_redirects_to_ceiling(
        self, stage_router: Router, renderer: RecordingRenderer
    ) -> None:
        """Scenario A: request stage 5 with nothing done -> stage 1."""
        navigation = await stage_router.navigate(DEAL_ID, "#/5-contract")

        assert navigation.stage == Stage.SELECT
        assert navigation.requested == 5
        assert navigation.redirected is True
        assert navigation.token == "#/1-select"
        assert renderer.rendered == [(DEAL_ID, Stage.SELECT)]

    @pytest.mark.asyncio
    async def test_allowed_stage_rendered(
        self,
        stage_router: Router,
        overlay: PersistenceOverlay,
        renderer: RecordingRenderer,
    ) -> None:
        await overlay.patch(DEAL_ID, SCENARIO_D_PATCH)
        navigation = await stage_router.navigate(DEAL_ID, 3)

        assert navigation.stage == Stage.EMAIL
        assert navigation.redirected is False
        assert navigation.can_go_back is True
        assert navigation.is_last is False
        assert renderer.rendered == [(DEAL_ID, Stage.EMAIL)]

    @pytest.mark.asyncio
    async def test_done_stage_never_rendered(
        self, stage_router: Router, overlay: PersistenceOverlay
    ) -> None:
        await overlay.patch(
            DEAL_ID,
            SCENARIO_D_PATCH | {"approval": {"result": "approved"}, "payoutDone": True},
        )
        navigation = await stage_router.navigate(DEAL_ID, 9)
        assert navigation.stage == Stage.PAYOUT
        assert navigation.redirected is True
        assert navigation.is_last is True

    @pytest.mark.asyncio
    async def test_indicators_mark_current_and_locked(
        self, stage_router: Router, controller: DealController
    ) -> None:
        await controller.select_blogger(DEAL_ID, "b1")
        navigation = await stage_router.navigate(DEAL_ID, 1)

        by_stage = {i.stage: i for i in navigation.indicators}
        assert by_stage[Stage.SELECT].current is True
        assert by_stage[Stage.SELECT].status == StageStatus.DONE
        assert by_stage[Stage.BRIEF].status == StageStatus.ACTIVE
        assert by_stage[Stage.EMAIL].status == StageStatus.LOCKED
        assert by_stage[Stage.EMAIL].token == "#/3-email"

    @pytest.mark.asyncio
    async def test_renderer_receives_record(self, controller: DealController) -> None:
        renderer = MagicMock()
        stage_router = Router(controller, renderer=renderer)

        await stage_router.navigate(DEAL_ID, 1)

        renderer.render.assert_called_once()
        stage, record = renderer.render.call_args.args
        assert stage == Stage.SELECT
        assert record.id == DEAL_ID


# ── Resume ──────────────────────────────────────────────────────────────────


class TestResume:
    """Last rendered stage is remembered on the deal."""

    @pytest.mark.asyncio
    async def test_last_stage_persisted(
        self, stage_router: Router, overlay: PersistenceOverlay
    ) -> None:
        await overlay.patch(DEAL_ID, SCENARIO_D_PATCH)
        await stage_router.navigate(DEAL_ID, 6)
        assert (await overlay.read(DEAL_ID)).last_stage == 6

    @pytest.mark.asyncio
    async def test_resume_without_token(
        self, stage_router: Router, overlay: PersistenceOverlay
    ) -> None:
        await overlay.patch(DEAL_ID, SCENARIO_D_PATCH)
        await stage_router.navigate(DEAL_ID, 4)

        navigation = await stage_router.resume(DEAL_ID)
        assert navigation.stage == Stage.OUTREACH

    @pytest.mark.asyncio
    async def test_resume_fresh_deal_starts_at_one(self, stage_router: Router) -> None:
        navigation = await stage_router.resume("deal_002")
        assert navigation.stage == Stage.SELECT

    @pytest.mark.asyncio
    async def test_resume_token_wins(
        self, stage_router: Router, overlay: PersistenceOverlay
    ) -> None:
        await overlay.patch(DEAL_ID, SCENARIO_D_PATCH)
        await stage_router.navigate(DEAL_ID, 4)
        navigation = await stage_router.resume(DEAL_ID, "#/2-brief")
        assert navigation.stage == Stage.BRIEF

    @pytest.mark.asyncio
    async def test_resume_clamps_stale_stage(
        self,
        stage_router: Router,
        overlay: PersistenceOverlay,
        controller: DealController,
    ) -> None:
        """A remembered stage beyond the ceiling after a regression is clamped."""
        await overlay.patch(DEAL_ID, SCENARIO_D_PATCH)
        await stage_router.navigate(DEAL_ID, 7)
        await controller.request_fix(DEAL_ID, "Re-cut the intro")

        navigation = await stage_router.resume(DEAL_ID)
        assert navigation.stage == Stage.SHOOT
        assert navigation.redirected is True


# ── next / previous ─────────────────────────────────────────────────────────


class TestNextPrevious:
    """Tests for Router.next and Router.previous."""

    @pytest.mark.asyncio
    async def test_next_blocked_names_missing(
        self, stage_router: Router, renderer: RecordingRenderer
    ) -> None:
        navigation = await stage_router.next(DEAL_ID, 1)

        assert navigation.stage == Stage.SELECT
        assert navigation.message == "Before continuing: select at least one influencer."
        assert renderer.rendered == []

    @pytest.mark.asyncio
    async def test_next_blocked_lists_every_brief_field(
        self, stage_router: Router, controller: DealController
    ) -> None:
        await controller.select_blogger(DEAL_ID, "b1")
        navigation = await stage_router.next(DEAL_ID, 2)
        assert navigation.message == (
            "Before continuing: brief goal; brief budget; brief deadline."
        )

    @pytest.mark.asyncio
    async def test_next_advances(
        self, stage_router: Router, controller: DealController
    ) -> None:
        await controller.select_blogger(DEAL_ID, "b1")
        navigation = await stage_router.next(DEAL_ID, 1)
        assert navigation.stage == Stage.BRIEF
        assert navigation.message is None

    @pytest.mark.asyncio
    async def test_next_at_payout_reports_completion(
        self, stage_router: Router, overlay: PersistenceOverlay
    ) -> None:
        await overlay.patch(
            DEAL_ID,
            SCENARIO_D_PATCH | {"approval": {"result": "approved"}, "payoutDone": True},
        )
        navigation = await stage_router.next(DEAL_ID, 8)
        assert navigation.stage == Stage.PAYOUT
        assert navigation.message == "Deal completed."

    @pytest.mark.asyncio
    async def test_previous_steps_back(
        self, stage_router: Router, overlay: PersistenceOverlay
    ) -> None:
        await overlay.patch(DEAL_ID, SCENARIO_D_PATCH)
        navigation = await stage_router.previous(DEAL_ID, 5)
        assert navigation.stage == Stage.OUTREACH

    @pytest.mark.asyncio
    async def test_previous_floor(self, stage_router: Router) -> None:
        navigation = await stage_router.previous(DEAL_ID, 1)
        assert navigation.stage == Stage.SELECT
        assert navigation.can_go_back is False


# ── Settlement on render ────────────────────────────────────────────────────


class TestPayoutRender:
    """Rendering the payout stage starts the deferred settlement."""

    @pytest.mark.asyncio
    async def test_payout_render_schedules_settlement(
        self,
        stage_router: Router,
        overlay: PersistenceOverlay,
        scheduler: PayoutScheduler,
    ) -> None:
        await overlay.patch(DEAL_ID, SCENARIO_D_PATCH | {"approval": {"result": "approved"}})

        navigation = await stage_router.navigate(DEAL_ID, "#/8-approval")

        assert navigation.stage == Stage.PAYOUT
        assert scheduler.is_pending(DEAL_ID)

        await scheduler.fire(DEAL_ID)
        assert (await overlay.read(DEAL_ID)).payout_done is True

    @pytest.mark.asyncio
    async def test_paid_out_deal_not_rescheduled(
        self,
        stage_router: Router,
        overlay: PersistenceOverlay,
        scheduler: PayoutScheduler,
    ) -> None:
        await overlay.patch(
            DEAL_ID,
            SCENARIO_D_PATCH | {"approval": {"result": "approved"}, "payoutDone": True},
        )
        await stage_router.navigate(DEAL_ID, 8)
        assert not scheduler.is_pending(DEAL_ID)
