"""REST API endpoints for the deal workflow.

Thin layer over DealController and Router, which are created in the app
lifespan and kept on app.state. Rejected actions (validation or stage-gate
failures) are returned as 422 with the typed ActionError as detail.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from src.dealflow.deals.controller import DealController
from src.dealflow.deals.router import Router
from src.dealflow.deals.schemas import ActionResult, Brief, Navigation, Stage
from src.dealflow.services.brief_analysis import (
    BriefAnalysis,
    BriefAnalysisService,
    BriefIncompleteError,
)

router = APIRouter(prefix="/deals", tags=["deals"])


# ── Request / Response Schemas ───────────────────────────────────────────────


class ActionRequest(BaseModel):
    """Request body for a deal action. Each action reads only its own fields."""

    blogger_id: str = ""
    goal: str = ""
    budget: Any = None
    deadline: str = ""
    account: str = ""
    count: int | None = None
    files: list[str] = Field(default_factory=list)
    link: str = ""
    comment: str = ""
    confirmed: bool = False


class DealSummaryResponse(BaseModel):
    """Catalog deal with its derived stage."""

    id: str
    title: str
    brand: str
    platform: str
    active_stage: Stage


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_state(request: Request, name: str) -> Any:
    """Retrieve a component from app.state, 503 if not available."""
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Deal workflow not initialized",
        )
    return component


def _get_controller(request: Request) -> DealController:
    return _get_state(request, "deal_controller")


def _get_router(request: Request) -> Router:
    return _get_state(request, "stage_router")


def _get_brief_analysis(request: Request) -> BriefAnalysisService:
    return _get_state(request, "brief_analysis")


def _raise_if_rejected(result: ActionResult) -> ActionResult:
    if not result.ok and result.error is not None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=result.error.model_dump(mode="json"),
        )
    return result


async def _dispatch(
    controller: DealController, action: str, deal_id: str, body: ActionRequest
) -> ActionResult:
    if action == "select_blogger":
        return await controller.select_blogger(deal_id, body.blogger_id)
    if action == "adopt_selection":
        return await controller.adopt_selection(deal_id)
    if action == "save_brief":
        return await controller.save_brief(deal_id, body.goal, body.budget, body.deadline)
    if action == "link_email":
        return await controller.link_email(deal_id, body.account)
    if action == "prepare_outreach":
        return await controller.prepare_outreach(deal_id)
    if action == "send_outreach":
        return await controller.send_outreach(deal_id)
    if action == "record_responses":
        return await controller.record_responses(deal_id, body.count)
    if action == "sign_contract":
        return await controller.sign_contract(deal_id)
    if action == "reserve_payment":
        return await controller.reserve_payment(deal_id)
    if action == "upload_draft":
        return await controller.upload_draft(deal_id, body.files)
    if action == "approve":
        return await controller.approve(deal_id, body.link, body.comment)
    if action == "request_fix":
        return await controller.request_fix(deal_id, body.comment, body.link)
    if action == "payout":
        return await controller.payout(deal_id)
    if action == "cancel_deal":
        return await controller.cancel_deal(deal_id, body.confirmed)
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Unknown action: {action}",
    )


# ── Deal Endpoints ───────────────────────────────────────────────────────────


@router.get("", response_model=list[DealSummaryResponse])
async def list_deals(request: Request) -> list[DealSummaryResponse]:
    """List catalog deals with their active stage."""
    controller = _get_controller(request)
    summaries: list[DealSummaryResponse] = []
    for base in controller.overlay.catalog.list_deals():
        state = await controller.load(base.id)
        summaries.append(
            DealSummaryResponse(
                id=base.id,
                title=base.title,
                brand=base.brand,
                platform=base.platform,
                active_stage=state.active_stage,
            )
        )
    return summaries


@router.post("/brief-analysis", response_model=BriefAnalysis)
async def analyze_brief(body: Brief, request: Request) -> BriefAnalysis:
    """Analyse a brief (LLM when configured, heuristic otherwise)."""
    service = _get_brief_analysis(request)
    try:
        return await service.analyze(body)
    except BriefIncompleteError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc


@router.get("/{deal_id}", response_model=ActionResult)
async def get_deal(deal_id: str, request: Request) -> ActionResult:
    """Current record, active stage, ceiling and control enablement."""
    controller = _get_controller(request)
    return await controller.load(deal_id)


@router.post("/{deal_id}/actions/{action}", response_model=ActionResult)
async def run_action(
    deal_id: str,
    action: str,
    request: Request,
    body: ActionRequest | None = None,
) -> ActionResult:
    """Run one stage action. 422 with the ActionError when it is rejected."""
    controller = _get_controller(request)
    result = await _dispatch(controller, action, deal_id, body or ActionRequest())
    return _raise_if_rejected(result)


@router.post("/{deal_id}/brief/suggestions", response_model=ActionResult)
async def apply_brief_suggestions(deal_id: str, request: Request) -> ActionResult:
    """Analyse the saved brief and append the suggestions to its goal."""
    controller = _get_controller(request)
    service = _get_brief_analysis(request)
    state = await controller.load(deal_id)
    try:
        analysis = await service.analyze(state.record.brief)
    except BriefIncompleteError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    result = await controller.apply_brief_suggestions(deal_id, analysis)
    return _raise_if_rejected(result)


# ── Navigation Endpoints ─────────────────────────────────────────────────────


@router.post("/{deal_id}/route", response_model=Navigation)
async def resolve_route(
    deal_id: str,
    request: Request,
    token: str | None = Query(default=None),
) -> Navigation:
    """Resolve a route token (or resume the last stage) for the deal.

    Records the rendered stage as the deal's last stage, hence POST.
    """
    stage_router = _get_router(request)
    return await stage_router.resume(deal_id, token)


@router.post("/{deal_id}/route/next", response_model=Navigation)
async def next_stage(
    deal_id: str,
    request: Request,
    current: int = Query(ge=1, le=9),
) -> Navigation:
    """Advance from ``current`` when its stage is complete."""
    stage_router = _get_router(request)
    return await stage_router.next(deal_id, current)


@router.post("/{deal_id}/route/previous", response_model=Navigation)
async def previous_stage(
    deal_id: str,
    request: Request,
    current: int = Query(ge=1, le=9),
) -> Navigation:
    """Step back one stage from ``current``."""
    stage_router = _get_router(request)
    return await stage_router.previous(deal_id, current)
