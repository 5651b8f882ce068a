"""Stage router -- route tokens, clamped navigation and stage rendering.

Route tokens look like ``#/4-outreach``: the numeric index is authoritative,
the slug is cosmetic and ignored when parsing. A request beyond the
navigation ceiling is not an error; it is clamped down to the ceiling and
navigation is re-issued (silent redirect).

Rendering is delegated to a StageRenderer adapter so the router stays free
of any presentation code.
"""

from __future__ import annotations

import re
from typing import Protocol

import structlog

from src.dealflow.deals.controller import DealController
from src.dealflow.deals.gate import MAX_ALLOWED_STAGE
from src.dealflow.deals.schemas import DealRecord, Navigation, Stage

logger = structlog.get_logger(__name__)

MAX_STEP = 9

# Fixed slug list used when building tokens (display only).
ROUTE_SLUGS: list[str] = [
    "select",
    "brief",
    "email",
    "outreach",
    "contract",
    "payment",
    "shoot",
    "approval",
    "payout",
]

_TOKEN_PATTERN = re.compile(r"^\s*#?/?(\d+)")


def clamp_step(index: int) -> int:
    return max(1, min(MAX_STEP, index))


def route_token(index: int) -> str:
    """Build the route token for a stage index (clamped to 1..9)."""
    index = clamp_step(index)
    return f"#/{index}-{ROUTE_SLUGS[index - 1]}"


def parse_route(token: str | None) -> int:
    """Extract the stage index from a route token.

    Missing or unparsable tokens resolve to 1; out-of-range numbers are
    clamped to 1..9.
    """
    match = _TOKEN_PATTERN.match(token or "")
    if match is None:
        return 1
    return clamp_step(int(match.group(1)))


# ── Rendering adapter ───────────────────────────────────────────────────────


class StageRenderer(Protocol):
    """Presentation adapter that draws one stage panel."""

    def render(self, stage: Stage, record: DealRecord) -> None: ...


class NullRenderer:
    """Renderer that only logs what would be drawn."""

    def render(self, stage: Stage, record: DealRecord) -> None:
        logger.debug("router.render", deal_id=record.id, stage=int(stage), panel=stage.name.lower())


# ── Router ──────────────────────────────────────────────────────────────────


class Router:
    """Resolves navigation requests for a deal against its stage gate.

    Args:
        controller: DealController (overlay, gate and settlement access).
        renderer: StageRenderer drawing the resolved stage panel.
    """

    def __init__(self, controller: DealController, renderer: StageRenderer | None = None) -> None:
        self._controller = controller
        self._gate = controller.gate
        self._renderer = renderer if renderer is not None else NullRenderer()

    async def navigate(self, deal_id: str, requested: int | str) -> Navigation:
        """Render the requested stage, or redirect to the ceiling if it is locked.

        Args:
            deal_id: Deal identifier.
            requested: Stage index or route token.

        Returns:
            Navigation describing the stage actually rendered.
        """
        index = parse_route(requested) if isinstance(requested, str) else clamp_step(requested)
        record = await self._controller.overlay.read(deal_id)
        allowed = self._gate.allowed_max_stage(record)

        if index > allowed:
            logger.info(
                "router.redirected",
                deal_id=deal_id,
                requested=index,
                allowed=int(allowed),
            )
            navigation = await self.navigate(deal_id, int(allowed))
            return navigation.model_copy(update={"requested": index, "redirected": True})

        stage = Stage(index)
        self._renderer.render(stage, record)
        record = await self._controller.remember_stage(deal_id, stage)

        if stage == Stage.PAYOUT:
            await self._controller.ensure_settlement(deal_id, record=record)

        logger.debug("router.navigated", deal_id=deal_id, stage=index)
        return self._describe(record, stage, requested=index)

    async def resume(self, deal_id: str, token: str | None = None) -> Navigation:
        """Navigate to ``token``, or to the last rendered stage when there is none."""
        if token:
            return await self.navigate(deal_id, token)
        record = await self._controller.overlay.read(deal_id)
        return await self.navigate(deal_id, record.last_stage or 1)

    async def next(self, deal_id: str, current: int) -> Navigation:
        """Advance one stage if the current stage is complete.

        When it is not, stays put and names the missing preconditions in
        ``message``. At the last navigable stage reports completion instead.
        """
        current = clamp_step(current)
        record = await self._controller.overlay.read(deal_id)
        stage = Stage(min(current, int(MAX_ALLOWED_STAGE)))
        met, missing = self._gate.check_stage(stage, record)
        if not met:
            logger.info(
                "router.next_blocked",
                deal_id=deal_id,
                stage=int(stage),
                missing=missing,
            )
            return self._describe(
                record,
                stage,
                requested=current + 1,
                message="Before continuing: " + "; ".join(missing) + ".",
            )
        if stage >= MAX_ALLOWED_STAGE:
            return self._describe(record, stage, requested=current, message="Deal completed.")
        return await self.navigate(deal_id, int(stage) + 1)

    async def previous(self, deal_id: str, current: int) -> Navigation:
        return await self.navigate(deal_id, clamp_step(current - 1))

    def _describe(
        self,
        record: DealRecord,
        stage: Stage,
        requested: int,
        message: str | None = None,
    ) -> Navigation:
        return Navigation(
            stage=stage,
            token=route_token(int(stage)),
            requested=requested,
            indicators=self._gate.stage_statuses(record, current=stage, token_for=route_token),
            can_go_back=stage > Stage.SELECT,
            is_last=stage >= MAX_ALLOWED_STAGE,
            message=message,
        )
