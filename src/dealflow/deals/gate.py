"""Stage gate -- pure evaluation of a deal record against the stage sequence.

Each workflow stage has a completion predicate over the DealRecord. The
navigation ceiling (allowed_max_stage) and the active stage are both derived
from a single in-order scan for the first incomplete stage, so the two can
never disagree.

IMPORTANT: Completion is monotonic except for one regression. Requesting a
fix on the approval stage clears uploadDone, which moves the active stage
back to SHOOT. Earlier stages (outreach, contract/payment) are never
re-evaluated as incomplete by that regression.
"""

from __future__ import annotations

from typing import Any, Callable

import structlog

from src.dealflow.deals.schemas import (
    ApprovalResult,
    DealRecord,
    Stage,
    StageIndicator,
    StageStatus,
)

logger = structlog.get_logger(__name__)

# ── Stage Order ─────────────────────────────────────────────────────────────

# Stages carrying a completion predicate, scanned in order. DONE is terminal
# and has no predicate; the ceiling never exceeds PAYOUT.
GATED_STAGES: list[Stage] = [
    Stage.SELECT,
    Stage.BRIEF,
    Stage.EMAIL,
    Stage.OUTREACH,
    Stage.CONTRACT_PAYMENT,
    Stage.SHOOT,
    Stage.APPROVAL,
    Stage.PAYOUT,
]

MAX_ALLOWED_STAGE: Stage = Stage.PAYOUT


def _filled(value: Any) -> bool:
    """True for a non-empty brief field (None, "" and 0 count as empty)."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return bool(value)


# ── Regression Rules ────────────────────────────────────────────────────────


def apply_regressions(patch: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``patch`` with the flags it invalidates cleared.

    A patch that sets ``approval.result`` to ``needs_changes`` also sets
    ``uploadDone`` to False, so the draft has to be uploaded again.

    Args:
        patch: Overlay patch in persisted (camelCase) shape.

    Returns:
        New patch dict; the input is not modified.
    """
    result = dict(patch)
    approval = patch.get("approval")
    if isinstance(approval, dict) and approval.get("result") == ApprovalResult.NEEDS_CHANGES.value:
        if result.get("uploadDone") is not False:
            logger.debug("gate.regression_applied", cleared="uploadDone")
        result["uploadDone"] = False
    return result


# ── Stage Gate ──────────────────────────────────────────────────────────────


class StageGate:
    """Completion predicates and stage derivation for a deal record.

    Args:
        min_outreach_responses: Responses required before outreach counts as
            complete. 0 disables the minimum-response rule.
    """

    def __init__(self, min_outreach_responses: int = 0) -> None:
        if min_outreach_responses < 0:
            raise ValueError("min_outreach_responses must be >= 0")
        self._min_responses = min_outreach_responses
        self._checks: dict[Stage, Callable[[DealRecord], list[str]]] = {
            Stage.SELECT: self._check_select,
            Stage.BRIEF: self._check_brief,
            Stage.EMAIL: self._check_email,
            Stage.OUTREACH: self._check_outreach,
            Stage.CONTRACT_PAYMENT: self._check_contract_payment,
            Stage.SHOOT: self._check_shoot,
            Stage.APPROVAL: self._check_approval,
            Stage.PAYOUT: self._check_payout,
        }

    @property
    def min_outreach_responses(self) -> int:
        return self._min_responses

    def check_stage(self, stage: Stage, record: DealRecord) -> tuple[bool, list[str]]:
        """Check a single stage's completion predicate.

        Args:
            stage: Stage to evaluate.
            record: Deal record to evaluate against.

        Returns:
            Tuple of (met, missing) where missing names each unmet
            precondition. DONE is always met.
        """
        check = self._checks.get(stage)
        if check is None:
            return True, []
        missing = check(record)
        return len(missing) == 0, missing

    def is_complete(self, stage: Stage, record: DealRecord) -> bool:
        met, _ = self.check_stage(stage, record)
        return met

    def allowed_max_stage(self, record: DealRecord) -> Stage:
        """Highest stage the user may view: the first incomplete stage.

        Scans SELECT..PAYOUT in order. When every stage is complete the
        ceiling stays at PAYOUT (the terminal stage is never navigable).
        """
        for stage in GATED_STAGES:
            if not self.is_complete(stage, record):
                return stage
        return MAX_ALLOWED_STAGE

    def active_stage(self, record: DealRecord) -> Stage:
        """Stage presented as in progress. Always equal to the ceiling."""
        return self.allowed_max_stage(record)

    def brief_started(self, record: DealRecord) -> bool:
        """True once any brief field has been filled in."""
        brief = record.brief
        return _filled(brief.goal) or _filled(brief.budget) or _filled(brief.deadline)

    def stage_statuses(
        self,
        record: DealRecord,
        current: Stage | None = None,
        token_for: Callable[[int], str] | None = None,
    ) -> list[StageIndicator]:
        """Build indicators for every stage (1..9) relative to the active stage.

        Args:
            record: Deal record.
            current: Stage being viewed, flagged ``current`` in the output.
            token_for: Optional function mapping a stage index to a route token.

        Returns:
            One StageIndicator per stage in order.
        """
        active = self.active_stage(record)
        allowed = self.allowed_max_stage(record)
        indicators: list[StageIndicator] = []
        for stage in Stage:
            if stage > allowed:
                status = StageStatus.LOCKED
            elif stage < active:
                status = StageStatus.DONE
            elif stage == active:
                status = StageStatus.ACTIVE
            else:
                status = StageStatus.AVAILABLE
            indicators.append(
                StageIndicator(
                    stage=stage,
                    label=stage.label,
                    token=token_for(int(stage)) if token_for else str(int(stage)),
                    status=status,
                    current=current is not None and stage == current,
                    enabled=stage <= allowed,
                )
            )
        return indicators

    # ── Per-stage predicates ────────────────────────────────────────────────

    def _check_select(self, record: DealRecord) -> list[str]:
        if not record.selected_blogger_id:
            return ["select at least one influencer"]
        return []

    def _check_brief(self, record: DealRecord) -> list[str]:
        missing: list[str] = []
        if not _filled(record.brief.goal):
            missing.append("brief goal")
        if not _filled(record.brief.budget):
            missing.append("brief budget")
        if not _filled(record.brief.deadline):
            missing.append("brief deadline")
        return missing

    def _check_email(self, record: DealRecord) -> list[str]:
        if not record.email_linked:
            return ["link an email account"]
        return []

    def _check_outreach(self, record: DealRecord) -> list[str]:
        if not record.outreach_sent:
            return ["send the outreach emails"]
        if record.outreach_responses < self._min_responses:
            return [
                f"outreach responses: {self._min_responses} required, "
                f"{record.outreach_responses} recorded"
            ]
        return []

    def _check_contract_payment(self, record: DealRecord) -> list[str]:
        missing: list[str] = []
        if not record.contract_signed:
            missing.append("sign the contract")
        if not record.paid:
            missing.append("reserve the payment")
        return missing

    def _check_shoot(self, record: DealRecord) -> list[str]:
        if not record.upload_done:
            return ["upload the draft video"]
        return []

    def _check_approval(self, record: DealRecord) -> list[str]:
        if record.approval.result != ApprovalResult.APPROVED:
            return ["approve the published video"]
        return []

    def _check_payout(self, record: DealRecord) -> list[str]:
        if not record.payout_done:
            return ["pay out the influencer"]
        return []
