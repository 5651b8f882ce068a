"""Exceptions raised by deal actions before any state is mutated.

Both kinds are converted into a typed ActionResult at the DealController
boundary; they never escape to the presentation layer.
"""

from __future__ import annotations

from src.dealflow.deals.schemas import ActionReason, Stage


class DealActionError(ValueError):
    """Base for rejected actions. Carries a reason code for the caller."""

    def __init__(self, reason: ActionReason, message: str) -> None:
        self.reason = reason
        self.message = message
        super().__init__(message)


class DealValidationError(DealActionError):
    """Raised when caller-supplied input for an action is missing or malformed."""


class GateViolationError(DealActionError):
    """Raised when an action is invoked before its prerequisite stage is complete."""

    def __init__(self, reason: ActionReason, message: str, required_stage: Stage) -> None:
        self.required_stage = required_stage
        super().__init__(reason, message)
