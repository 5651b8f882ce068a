"""Pydantic data models for the deal workflow.

Defines the persisted deal record (camelCase on the wire, snake_case in
Python), the stage enumeration, and the typed results returned by the
controller and router:
- Enums: Stage, ApprovalResult, StageStatus, ActionReason
- Records: Brief, Approval, DealBase, DealRecord
- Results: Enablement, ActionError, ActionResult, StageIndicator, Navigation
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# ── Enums ───────────────────────────────────────────────────────────────────


class Stage(IntEnum):
    """Workflow stage, numbered in the fixed order a deal moves through."""

    SELECT = 1
    BRIEF = 2
    EMAIL = 3
    OUTREACH = 4
    CONTRACT_PAYMENT = 5
    SHOOT = 6
    APPROVAL = 7
    PAYOUT = 8
    DONE = 9

    @property
    def label(self) -> str:
        return _STAGE_LABELS[self]


_STAGE_LABELS: dict[Stage, str] = {
    Stage.SELECT: "Influencer selection",
    Stage.BRIEF: "Brief",
    Stage.EMAIL: "Email linking",
    Stage.OUTREACH: "Outreach",
    Stage.CONTRACT_PAYMENT: "Contract / payment",
    Stage.SHOOT: "Shoot",
    Stage.APPROVAL: "Approval",
    Stage.PAYOUT: "Influencer payout",
    Stage.DONE: "Done",
}


class ApprovalResult(str, Enum):
    """Outcome of reviewing the published draft."""

    PENDING = "pending"
    APPROVED = "approved"
    NEEDS_CHANGES = "needs_changes"


class StageStatus(str, Enum):
    """Display status of a stage indicator relative to the active stage."""

    DONE = "done"
    ACTIVE = "active"
    AVAILABLE = "available"
    LOCKED = "locked"


class ActionReason(str, Enum):
    """Why a controller action was rejected."""

    MISSING_BLOGGER = "missing_blogger"
    MISSING_GOAL = "missing_goal"
    INVALID_BUDGET = "invalid_budget"
    MISSING_DEADLINE = "missing_deadline"
    NO_SUGGESTIONS = "no_suggestions"
    INVALID_EMAIL = "invalid_email"
    INVALID_RESPONSE_COUNT = "invalid_response_count"
    CONTRACT_NOT_SIGNED = "contract_not_signed"
    MISSING_FILE = "missing_file"
    INVALID_LINK = "invalid_link"
    MISSING_COMMENT = "missing_comment"
    NOT_APPROVED = "not_approved"
    STAGE_LOCKED = "stage_locked"
    CONFIRMATION_REQUIRED = "confirmation_required"


# ── Deal Record ─────────────────────────────────────────────────────────────


class _CamelModel(BaseModel):
    """Base for persisted models: camelCase aliases, populate by either name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Brief(_CamelModel):
    """Campaign brief. Budget is empty (None) until the brief is saved."""

    goal: str = ""
    budget: float | None = None
    deadline: str = ""

    @field_validator("budget", mode="before")
    @classmethod
    def _empty_budget(cls, value: Any) -> Any:
        if value == "":
            return None
        return value

    @field_validator("goal", "deadline", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class Approval(_CamelModel):
    """Review of the published draft: link to it, reviewer comment, verdict."""

    link: str = ""
    comment: str = ""
    result: ApprovalResult = ApprovalResult.PENDING

    @field_validator("result", mode="before")
    @classmethod
    def _blank_result(cls, value: Any) -> Any:
        if value in (None, ""):
            return ApprovalResult.PENDING
        return value

    @field_validator("link", "comment", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class DealBase(_CamelModel):
    """Immutable catalog entry a deal's progress is layered on top of."""

    id: str
    title: str = "Deal"
    brand: str = ""
    platform: str = ""
    due_date: str | None = None


class DealRecord(DealBase):
    """One workflow instance: catalog identity merged with persisted progress."""

    selected_blogger_id: str | None = None
    brief: Brief = Field(default_factory=Brief)
    email_linked: bool = False
    email_account: str = ""
    outreach_sent: bool = False
    outreach_responses: int = Field(default=0, ge=0)
    contract_signed: bool = False
    paid: bool = False
    upload_done: bool = False
    approval: Approval = Field(default_factory=Approval)
    payout_done: bool = False
    last_stage: int | None = Field(default=None, ge=1, le=9)

    def to_persisted(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON shape used by the overlay."""
        return self.model_dump(mode="json", by_alias=True)


# Identity fields come from the catalog; overlay entries never override them.
IDENTITY_FIELDS: frozenset[str] = frozenset({"id", "title", "brand", "platform", "dueDate"})

# Nested objects merged one level deep when patching.
NESTED_FIELDS: frozenset[str] = frozenset({"brief", "approval"})


# ── Controller Results ──────────────────────────────────────────────────────


class Enablement(BaseModel):
    """Which stage controls are usable given the record and active stage."""

    sign: bool = False
    pay: bool = False
    upload: bool = False
    approve: bool = False
    request_fix: bool = False
    payout: bool = False


class ActionError(BaseModel):
    """Typed rejection of an action: reason code plus the missing precondition."""

    reason: ActionReason
    message: str


class ActionResult(BaseModel):
    """Outcome of a controller action and the state the UI should reflect."""

    ok: bool
    action: str
    record: DealRecord
    active_stage: Stage
    allowed_max_stage: Stage
    enablement: Enablement
    error: ActionError | None = None
    info: dict[str, Any] = Field(default_factory=dict)


# ── Router Results ──────────────────────────────────────────────────────────


class StageIndicator(BaseModel):
    """One entry of the stage strip / tab bar."""

    stage: Stage
    label: str
    token: str
    status: StageStatus
    current: bool = False
    enabled: bool = True


class Navigation(BaseModel):
    """Result of resolving a navigation request."""

    stage: Stage
    token: str
    requested: int
    redirected: bool = False
    indicators: list[StageIndicator] = Field(default_factory=list)
    can_go_back: bool = False
    is_last: bool = False
    message: str | None = None
