"""Deal controller -- validated user actions over the persistence overlay.

Every action follows the same flow:
1. Read the current record.
2. Validate the caller's input and that the action's stage is reached
   (synchronously). On failure return a typed ActionResult with ok=False --
   nothing is written.
3. Patch exactly the fields the action owns (regression rules applied).
4. Re-derive active stage / navigation ceiling and report UI enablement.

Approving a draft schedules the deferred payout settlement; requesting a fix
or cancelling the deal cancels it.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from typing import Any

import structlog

from src.dealflow.deals.errors import (
    DealActionError,
    DealValidationError,
    GateViolationError,
)
from src.dealflow.deals.gate import StageGate, apply_regressions
from src.dealflow.deals.overlay import PersistenceOverlay
from src.dealflow.deals.payout import PayoutScheduler
from src.dealflow.deals.schemas import (
    ActionError,
    ActionReason,
    ActionResult,
    ApprovalResult,
    DealRecord,
    Enablement,
    Stage,
)
from src.dealflow.deals.selection import InMemorySelection, SelectionProvider
from src.dealflow.services.brief_analysis import BriefAnalysis, augment_goal

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
LINK_PATTERN = re.compile(r"^https?://.+", re.IGNORECASE)

# Share of outreach recipients assumed to answer when no count is given.
DEFAULT_RESPONSE_RATE = 0.3

PatchBuilder = Callable[[DealRecord], dict[str, Any]]


def parse_budget(value: Any) -> float:
    """Parse a budget input into a positive number.

    Accepts numbers and numeric strings (spaces and a decimal comma allowed).

    Raises:
        DealValidationError: If the budget is empty, non-numeric or <= 0.
    """
    if value is None or isinstance(value, bool) or (isinstance(value, str) and not value.strip()):
        raise DealValidationError(ActionReason.INVALID_BUDGET, "Specify the campaign budget.")
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).replace(" ", "").replace("\u00a0", "").replace(",", ".")
        try:
            number = float(text)
        except ValueError:
            raise DealValidationError(
                ActionReason.INVALID_BUDGET, f"Budget must be a number, got {value!r}."
            ) from None
    if not number > 0 or number == float("inf"):
        raise DealValidationError(ActionReason.INVALID_BUDGET, "Budget must be greater than zero.")
    return number


def compute_enablement(record: DealRecord, active: Stage, allowed: Stage) -> Enablement:
    """Which stage controls are usable for ``record``."""
    return Enablement(
        sign=active >= Stage.CONTRACT_PAYMENT and not record.contract_signed,
        pay=record.contract_signed and not record.paid,
        upload=active >= Stage.SHOOT and not record.upload_done,
        approve=active >= Stage.APPROVAL,
        request_fix=active >= Stage.APPROVAL,
        payout=allowed >= Stage.PAYOUT and not record.payout_done,
    )


class DealController:
    """Orchestrates validated stage actions for deals.

    Args:
        overlay: PersistenceOverlay holding deal progress.
        gate: StageGate deriving active stage and ceiling.
        scheduler: PayoutScheduler for the deferred settlement.
        selection: Influencer selection list (outreach recipients, stage 1).
    """

    def __init__(
        self,
        overlay: PersistenceOverlay,
        gate: StageGate,
        scheduler: PayoutScheduler,
        selection: SelectionProvider | None = None,
    ) -> None:
        self._overlay = overlay
        self._gate = gate
        self._scheduler = scheduler
        self._selection = selection if selection is not None else InMemorySelection()

    @property
    def gate(self) -> StageGate:
        return self._gate

    @property
    def overlay(self) -> PersistenceOverlay:
        return self._overlay

    @property
    def scheduler(self) -> PayoutScheduler:
        return self._scheduler

    # ── State ───────────────────────────────────────────────────────────────

    async def load(self, deal_id: str) -> ActionResult:
        """Current record and derived stage state, without changing anything."""
        record = await self._overlay.read(deal_id)
        return self._result("load", record)

    # ── Stage 1: selection ──────────────────────────────────────────────────

    async def select_blogger(self, deal_id: str, blogger_id: str) -> ActionResult:
        def build(record: DealRecord) -> dict[str, Any]:
            value = (blogger_id or "").strip()
            if not value:
                raise DealValidationError(
                    ActionReason.MISSING_BLOGGER, "Choose at least one influencer."
                )
            return {"selectedBloggerId": value}

        return await self._apply("select_blogger", deal_id, build)

    async def adopt_selection(self, deal_id: str) -> ActionResult:
        """Record the first influencer from the selection list on the deal."""

        def build(record: DealRecord) -> dict[str, Any]:
            ids = self._selection.selected_ids()
            if not ids:
                raise DealValidationError(
                    ActionReason.MISSING_BLOGGER, "Choose at least one influencer."
                )
            if record.selected_blogger_id == ids[0]:
                return {}
            return {"selectedBloggerId": ids[0]}

        return await self._apply("adopt_selection", deal_id, build)

    # ── Stage 2: brief ──────────────────────────────────────────────────────

    async def save_brief(
        self,
        deal_id: str,
        goal: str,
        budget: Any,
        deadline: str,
    ) -> ActionResult:
        def build(record: DealRecord) -> dict[str, Any]:
            goal_value = (goal or "").strip()
            if not goal_value:
                raise DealValidationError(ActionReason.MISSING_GOAL, "Describe the campaign goal.")
            budget_value = parse_budget(budget)
            deadline_value = (deadline or "").strip()
            if not deadline_value:
                raise DealValidationError(ActionReason.MISSING_DEADLINE, "Set the campaign deadline.")
            return {
                "brief": {
                    "goal": goal_value,
                    "budget": budget_value,
                    "deadline": deadline_value,
                }
            }

        return await self._apply("save_brief", deal_id, build)

    async def apply_brief_suggestions(self, deal_id: str, analysis: BriefAnalysis) -> ActionResult:
        """Append analysis suggestions to the brief goal. Other brief fields are untouched."""

        def build(record: DealRecord) -> dict[str, Any]:
            if not analysis.suggestions:
                raise DealValidationError(
                    ActionReason.NO_SUGGESTIONS, "The analysis has no suggestions to apply."
                )
            return {"brief": {"goal": augment_goal(record.brief.goal, analysis)}}

        return await self._apply("apply_brief_suggestions", deal_id, build)

    # ── Stage 3: email ──────────────────────────────────────────────────────

    async def link_email(self, deal_id: str, account: str) -> ActionResult:
        def build(record: DealRecord) -> dict[str, Any]:
            value = (account or "").strip()
            if not EMAIL_PATTERN.match(value):
                raise DealValidationError(ActionReason.INVALID_EMAIL, "Enter a valid e-mail address.")
            return {"emailLinked": True, "emailAccount": value}

        return await self._apply("link_email", deal_id, build)

    # ── Stage 4: outreach ───────────────────────────────────────────────────

    async def prepare_outreach(self, deal_id: str) -> ActionResult:
        """List outreach recipients. Informational only, no state change."""
        record = await self._overlay.read(deal_id)
        recipients = self._recipients(record)
        logger.info("controller.outreach_prepared", deal_id=deal_id, recipients=len(recipients))
        return self._result("prepare_outreach", record, info={"recipients": recipients})

    async def send_outreach(self, deal_id: str) -> ActionResult:
        return await self._apply("send_outreach", deal_id, lambda record: {"outreachSent": True})

    async def record_responses(self, deal_id: str, count: int | None = None) -> ActionResult:
        """Record how many recipients answered the outreach.

        Without an explicit count, assumes DEFAULT_RESPONSE_RATE of the
        recipients answered (at least one).
        """

        def build(record: DealRecord) -> dict[str, Any]:
            if count is None:
                value = max(1, round(len(self._recipients(record)) * DEFAULT_RESPONSE_RATE))
            else:
                value = count
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise DealValidationError(
                    ActionReason.INVALID_RESPONSE_COUNT, "Mark at least one response."
                )
            return {"outreachSent": True, "outreachResponses": value}

        return await self._apply("record_responses", deal_id, build)

    # ── Stage 5: contract / payment ─────────────────────────────────────────

    async def sign_contract(self, deal_id: str) -> ActionResult:
        def build(record: DealRecord) -> dict[str, Any]:
            self._require_stage(
                record, Stage.CONTRACT_PAYMENT, "Finish the outreach before signing the contract."
            )
            return {"contractSigned": True}

        return await self._apply("sign_contract", deal_id, build)

    async def reserve_payment(self, deal_id: str) -> ActionResult:
        def build(record: DealRecord) -> dict[str, Any]:
            if not record.contract_signed:
                raise GateViolationError(
                    ActionReason.CONTRACT_NOT_SIGNED,
                    "Sign the contract before reserving the payment.",
                    required_stage=Stage.CONTRACT_PAYMENT,
                )
            return {"paid": True}

        return await self._apply("reserve_payment", deal_id, build)

    # ── Stage 6: shoot ──────────────────────────────────────────────────────

    async def upload_draft(self, deal_id: str, files: Sequence[str]) -> ActionResult:
        names = [name for name in (files or []) if name and name.strip()]

        def build(record: DealRecord) -> dict[str, Any]:
            self._require_stage(
                record, Stage.SHOOT, "Sign the contract and reserve the payment before uploading."
            )
            if not names:
                raise DealValidationError(ActionReason.MISSING_FILE, "Choose a draft video to upload.")
            return {"uploadDone": True}

        return await self._apply("upload_draft", deal_id, build, info={"files": names})

    # ── Stage 7: approval ───────────────────────────────────────────────────

    async def approve(self, deal_id: str, link: str, comment: str = "") -> ActionResult:
        def build(record: DealRecord) -> dict[str, Any]:
            self._require_stage(record, Stage.APPROVAL, "Upload a draft before approving it.")
            link_value = (link or "").strip()
            if not LINK_PATTERN.match(link_value):
                raise DealValidationError(
                    ActionReason.INVALID_LINK, "Add a valid link to the published video."
                )
            return {
                "approval": {
                    "link": link_value,
                    "result": ApprovalResult.APPROVED.value,
                    "comment": (comment or "").strip(),
                }
            }

        result = await self._apply("approve", deal_id, build)
        if result.ok:
            scheduled = await self.ensure_settlement(deal_id, record=result.record)
            result.info["payout_scheduled"] = scheduled
        return result

    async def request_fix(self, deal_id: str, comment: str, link: str = "") -> ActionResult:
        """Reject the draft. Reopens the shoot stage (uploadDone cleared)."""

        def build(record: DealRecord) -> dict[str, Any]:
            self._require_stage(
                record, Stage.APPROVAL, "Upload a draft before requesting changes."
            )
            comment_value = (comment or "").strip()
            if not comment_value:
                raise DealValidationError(
                    ActionReason.MISSING_COMMENT, "Describe what needs to be fixed."
                )
            return {
                "approval": {
                    "link": (link or "").strip(),
                    "result": ApprovalResult.NEEDS_CHANGES.value,
                    "comment": comment_value,
                },
                "uploadDone": False,
            }

        result = await self._apply("request_fix", deal_id, build)
        if result.ok:
            self._scheduler.cancel(deal_id)
        return result

    # ── Stage 8: payout ─────────────────────────────────────────────────────

    async def payout(self, deal_id: str) -> ActionResult:
        def build(record: DealRecord) -> dict[str, Any]:
            if record.approval.result != ApprovalResult.APPROVED:
                raise GateViolationError(
                    ActionReason.NOT_APPROVED,
                    "Approve the video before paying out the influencer.",
                    required_stage=Stage.APPROVAL,
                )
            if self._gate.allowed_max_stage(record) < Stage.PAYOUT:
                raise GateViolationError(
                    ActionReason.STAGE_LOCKED,
                    "Complete the earlier stages before paying out the influencer.",
                    required_stage=self._gate.allowed_max_stage(record),
                )
            return {"payoutDone": True}

        result = await self._apply("payout", deal_id, build)
        if result.ok:
            self._scheduler.cancel(deal_id)
        return result

    async def ensure_settlement(self, deal_id: str, record: DealRecord | None = None) -> bool:
        """Schedule the deferred payout if the deal is approved and not yet paid out.

        Nothing is scheduled while the payout stage is still locked, i.e.
        while any stage before it is incomplete.

        Returns:
            True if a new settlement task was scheduled.
        """
        if record is None:
            record = await self._overlay.read(deal_id)
        if not self._settlement_due(record):
            return False
        return self._scheduler.schedule(deal_id, lambda: self._settle(deal_id))

    async def _settle(self, deal_id: str) -> None:
        record = await self._overlay.read(deal_id)
        if not self._settlement_due(record):
            logger.info(
                "controller.settlement_skipped",
                deal_id=deal_id,
                approval=record.approval.result.value,
                payout_done=record.payout_done,
                allowed_max_stage=int(self._gate.allowed_max_stage(record)),
            )
            return
        await self._overlay.patch(deal_id, {"payoutDone": True})

    def _settlement_due(self, record: DealRecord) -> bool:
        return (
            record.approval.result == ApprovalResult.APPROVED
            and not record.payout_done
            and self._gate.allowed_max_stage(record) >= Stage.PAYOUT
        )

    # ── Navigation memory ───────────────────────────────────────────────────

    async def remember_stage(self, deal_id: str, stage: Stage) -> DealRecord:
        """Persist the last rendered stage so the deal can be resumed there."""
        record = await self._overlay.read(deal_id)
        if record.last_stage == int(stage):
            return record
        return await self._overlay.patch(deal_id, {"lastStage": int(stage)})

    # ── Cancel ──────────────────────────────────────────────────────────────

    async def cancel_deal(self, deal_id: str, confirmed: bool = False) -> ActionResult:
        """Discard all progress for the deal. Requires explicit confirmation."""
        if not confirmed:
            record = await self._overlay.read(deal_id)
            return self._reject(
                "cancel_deal",
                deal_id,
                record,
                DealValidationError(
                    ActionReason.CONFIRMATION_REQUIRED,
                    "Confirm that the deal and its data should be cleared.",
                ),
            )
        self._scheduler.cancel(deal_id)
        record = await self._overlay.remove(deal_id)
        logger.info("controller.deal_cancelled", deal_id=deal_id)
        return self._result("cancel_deal", record)

    # ── Internals ───────────────────────────────────────────────────────────

    async def _apply(
        self,
        action: str,
        deal_id: str,
        build: PatchBuilder,
        info: dict[str, Any] | None = None,
    ) -> ActionResult:
        record = await self._overlay.read(deal_id)
        try:
            patch = build(record)
        except DealActionError as exc:
            return self._reject(action, deal_id, record, exc)

        if patch:
            record = await self._overlay.patch(deal_id, apply_regressions(patch))
        result = self._result(action, record, info=info)
        logger.info(
            "controller.action_applied",
            action=action,
            deal_id=deal_id,
            fields=sorted(patch),
            active_stage=int(result.active_stage),
        )
        return result

    def _require_stage(self, record: DealRecord, stage: Stage, message: str) -> None:
        """Reject an action whose stage has not been reached yet.

        Raises:
            GateViolationError: If the active stage is below ``stage``. The
                required stage is the one that must be completed first.
        """
        active = self._gate.active_stage(record)
        if active < stage:
            raise GateViolationError(ActionReason.STAGE_LOCKED, message, required_stage=active)

    def _reject(
        self,
        action: str,
        deal_id: str,
        record: DealRecord,
        exc: DealActionError,
    ) -> ActionResult:
        logger.info(
            "controller.action_rejected",
            action=action,
            deal_id=deal_id,
            reason=exc.reason.value,
        )
        return self._result(
            action,
            record,
            error=ActionError(reason=exc.reason, message=exc.message),
        )

    def _result(
        self,
        action: str,
        record: DealRecord,
        error: ActionError | None = None,
        info: dict[str, Any] | None = None,
    ) -> ActionResult:
        active = self._gate.active_stage(record)
        allowed = self._gate.allowed_max_stage(record)
        return ActionResult(
            ok=error is None,
            action=action,
            record=record,
            active_stage=active,
            allowed_max_stage=allowed,
            enablement=compute_enablement(record, active, allowed),
            error=error,
            info=dict(info or {}),
        )

    def _recipients(self, record: DealRecord) -> list[str]:
        ids = self._selection.selected_ids()
        if not ids and record.selected_blogger_id:
            return [record.selected_blogger_id]
        return ids
