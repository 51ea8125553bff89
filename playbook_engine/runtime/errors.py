"""Error taxonomy for the playbook execution engine.

Every engine error carries a ``kind`` string. The kind is what ends up in a
failed run's ``error`` payload, so operators can route failures (for
example, human escalations) without parsing messages.

Kinds:
    DefinitionNotFound: The playbook definition does not exist; no run starts.
    PlaybookNotActive: The playbook is not ACTIVE and the caller required it.
    InvalidStepConfig: DATA/BRANCH/AGENT/API misconfiguration; fails the step.
    UnmatchedBranch: No branch condition matched and no default exists.
    StepExecutionFailure: Generic handler failure.
    HumanEscalationRequired: A step escalated to ``human``.
    StepNotFound: The visited sequence referenced an unknown step key.
    CycleDetected: A step was revisited or the step budget was exhausted.
    RunNotFound: The run row does not exist for this org.
    InvalidRunState: The run is terminal and cannot be re-entered or cancelled.
    InvalidStateTransition: A status change would move backwards.
"""

from __future__ import annotations

import traceback
from typing import Any, Dict, Optional


class PlaybookEngineError(Exception):
    """Base class for all engine errors."""

    kind = "PlaybookEngineError"

    def __init__(self, message: str, *, step_key: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step_key = step_key


class DefinitionNotFound(PlaybookEngineError):
    kind = "DefinitionNotFound"


class PlaybookNotActive(PlaybookEngineError):
    kind = "PlaybookNotActive"


class InvalidStepConfig(PlaybookEngineError):
    kind = "InvalidStepConfig"


class UnmatchedBranch(PlaybookEngineError):
    kind = "UnmatchedBranch"


class StepExecutionFailure(PlaybookEngineError):
    """Generic handler failure. Wraps the original exception as ``__cause__``."""

    kind = "StepExecutionFailure"


class HumanEscalationRequired(PlaybookEngineError):
    """A step asked for human intervention.

    Distinct from StepExecutionFailure so failed runs can be routed to an
    operator queue instead of an error queue.
    """

    kind = "HumanEscalationRequired"

    def __init__(
        self,
        message: str,
        *,
        step_key: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        super().__init__(message, step_key=step_key)
        self.reason = reason


class StepNotFound(PlaybookEngineError):
    kind = "StepNotFound"


class CycleDetected(PlaybookEngineError):
    kind = "CycleDetected"


class RunNotFound(PlaybookEngineError):
    kind = "RunNotFound"


class InvalidRunState(PlaybookEngineError):
    kind = "InvalidRunState"


class InvalidStateTransition(PlaybookEngineError):
    kind = "InvalidStateTransition"


def error_kind(exc: BaseException) -> str:
    """Return the taxonomy kind for an exception (unknown errors are step failures)."""
    if isinstance(exc, PlaybookEngineError):
        return exc.kind
    return StepExecutionFailure.kind


def error_to_dict(exc: BaseException, step_key: Optional[str] = None) -> Dict[str, Any]:
    """Build the structured ``{kind, message, stack, step_key}`` error payload.

    Args:
        exc: The exception that terminated the step or run.
        step_key: Step that failed, if not already recorded on the exception.

    Returns:
        JSON-serializable error dictionary.
    """
    key = step_key
    if key is None and isinstance(exc, PlaybookEngineError):
        key = exc.step_key
    payload: Dict[str, Any] = {
        "kind": error_kind(exc),
        "message": str(exc),
        "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        "step_key": key,
    }
    if isinstance(exc, HumanEscalationRequired) and exc.reason:
        payload["reason"] = exc.reason
    return payload
