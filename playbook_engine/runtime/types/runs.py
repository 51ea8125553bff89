"""Run types for the playbook execution lifecycle.

This module contains the PlaybookRun and PlaybookStepRun records, their
status enums and allowed transitions, and dictionary serdes used by the
HTTP surface.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from ..errors import InvalidStateTransition
from ._ids import OrgId, PlaybookId, RunId, StepRunId
from ._time import _datetime_to_iso, _utcnow
from .collaboration import EscalationLevel


class RunStatus(str, Enum):
    """Status of a run's execution lifecycle."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_RUN_STATUSES


class StepRunStatus(str, Enum):
    """Status of one step dispatch. Moves forward only."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STEP_STATUSES


_TERMINAL_RUN_STATUSES = frozenset({RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED})
_TERMINAL_STEP_STATUSES = frozenset(
    {StepRunStatus.SUCCEEDED, StepRunStatus.FAILED, StepRunStatus.SKIPPED}
)

RUN_TRANSITIONS: Dict[RunStatus, FrozenSet[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING, RunStatus.FAILED, RunStatus.CANCELLED}),
    RunStatus.RUNNING: frozenset({RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED}),
    RunStatus.SUCCEEDED: frozenset(),
    RunStatus.FAILED: frozenset(),
    RunStatus.CANCELLED: frozenset(),
}

STEP_RUN_TRANSITIONS: Dict[StepRunStatus, FrozenSet[StepRunStatus]] = {
    StepRunStatus.PENDING: frozenset(
        {StepRunStatus.RUNNING, StepRunStatus.FAILED, StepRunStatus.SKIPPED}
    ),
    StepRunStatus.RUNNING: frozenset(
        {StepRunStatus.SUCCEEDED, StepRunStatus.FAILED, StepRunStatus.SKIPPED}
    ),
    StepRunStatus.SUCCEEDED: frozenset(),
    StepRunStatus.FAILED: frozenset(),
    StepRunStatus.SKIPPED: frozenset(),
}


@dataclass
class PlaybookRun:
    """One execution instance of a playbook against a specific input.

    Attributes:
        id: Unique run identifier.
        playbook_id: Playbook being executed.
        org_id: Owning organization.
        status: Current lifecycle status.
        triggered_by: Actor that started the run, if known.
        input: Initial input handed to the first step.
        output: ``{step_key: output}`` for every executed step (success only).
        error: Structured ``{kind, message, stack, step_key}`` (failure only).
        started_at: When the loop first set RUNNING.
        completed_at: When the terminal status was written.
        max_steps: Per-run dispatch budget; None uses the controller default.
    """

    id: RunId
    playbook_id: PlaybookId
    org_id: OrgId
    status: RunStatus = RunStatus.PENDING
    triggered_by: Optional[str] = None
    input: Any = None
    output: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    max_steps: Optional[int] = None

    def transition_to(self, status: RunStatus) -> None:
        """Move to ``status``, rejecting backward or post-terminal moves."""
        if status not in RUN_TRANSITIONS[self.status]:
            raise InvalidStateTransition(
                f"Run {self.id}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        self.updated_at = _utcnow()


@dataclass
class PlaybookStepRun:
    """Execution record of one step within a run.

    ``collaboration_context`` is the coordinator snapshot taken once the
    step's own patch and escalation request were applied.
    """

    id: StepRunId
    run_id: RunId
    playbook_id: PlaybookId
    org_id: OrgId
    step_id: str
    step_key: str
    status: StepRunStatus = StepRunStatus.PENDING
    input: Any = None
    output: Any = None
    error: Optional[Dict[str, Any]] = None
    collaboration_context: Optional[Dict[str, Any]] = None
    escalation_level: EscalationLevel = EscalationLevel.NONE
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def transition_to(self, status: StepRunStatus) -> None:
        """Move to ``status``; the step state machine never goes backward."""
        if status not in STEP_RUN_TRANSITIONS[self.status]:
            raise InvalidStateTransition(
                f"Step run {self.id} ({self.step_key}): cannot move from "
                f"{self.status.value} to {status.value}",
                step_key=self.step_key,
            )
        self.status = status
        self.updated_at = _utcnow()


@dataclass
class RunWithSteps:
    """A run and its step runs in creation (visit) order."""

    run: PlaybookRun
    steps: List[PlaybookStepRun] = field(default_factory=list)


# =============================================================================
# Serialization Functions
# =============================================================================


def playbook_run_to_dict(run: PlaybookRun) -> Dict[str, Any]:
    """Convert PlaybookRun to a JSON-safe dictionary (API shape)."""
    return {
        "id": run.id,
        "playbookId": run.playbook_id,
        "orgId": run.org_id,
        "status": run.status.value,
        "triggeredBy": run.triggered_by,
        "input": copy.deepcopy(run.input),
        "output": copy.deepcopy(run.output),
        "error": copy.deepcopy(run.error),
        "startedAt": _datetime_to_iso(run.started_at),
        "completedAt": _datetime_to_iso(run.completed_at),
        "createdAt": _datetime_to_iso(run.created_at),
        "updatedAt": _datetime_to_iso(run.updated_at),
        "maxSteps": run.max_steps,
    }


def step_run_to_dict(step_run: PlaybookStepRun) -> Dict[str, Any]:
    """Convert PlaybookStepRun to a JSON-safe dictionary (API shape)."""
    return {
        "id": step_run.id,
        "runId": step_run.run_id,
        "playbookId": step_run.playbook_id,
        "orgId": step_run.org_id,
        "stepId": step_run.step_id,
        "stepKey": step_run.step_key,
        "status": step_run.status.value,
        "input": copy.deepcopy(step_run.input),
        "output": copy.deepcopy(step_run.output),
        "error": copy.deepcopy(step_run.error),
        "collaborationContext": copy.deepcopy(step_run.collaboration_context),
        "escalationLevel": step_run.escalation_level.value,
        "startedAt": _datetime_to_iso(step_run.started_at),
        "completedAt": _datetime_to_iso(step_run.completed_at),
        "createdAt": _datetime_to_iso(step_run.created_at),
        "updatedAt": _datetime_to_iso(step_run.updated_at),
    }


def run_with_steps_to_dict(result: RunWithSteps) -> Dict[str, Any]:
    return {
        "run": playbook_run_to_dict(result.run),
        "steps": [step_run_to_dict(s) for s in result.steps],
    }


def collect_final_output(step_runs: List[PlaybookStepRun]) -> Dict[str, Any]:
    """Build the run output map ``{step_key: output}`` from executed steps."""
    outputs: Dict[str, Any] = {}
    for step_run in step_runs:
        if step_run.status is StepRunStatus.SUCCEEDED:
            outputs[step_run.step_key] = copy.deepcopy(step_run.output)
    return outputs
