"""
base.py - Step handler contract.

This module defines the interface every step type implements:
- StepExecutionContext: everything a handler may read
- StepOutcome: what a handler produces
- StepHandler: the ABC the executor dispatches to

Handlers do NOT own:
- StepRun persistence or status transitions (the run controller's job)
- Next-step resolution (the coordinator's job)
- Memory capture (the memory recorder's job)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ...types import EscalationLevel, PlaybookStep, StepType


@dataclass(frozen=True)
class StepExecutionContext:
    """Input context for executing one step.

    Attributes:
        org_id: Owning organization.
        run_id: Run the step belongs to.
        playbook_id: Playbook being executed.
        step: The step definition (typed config included).
        input: The step input (previous step output, or the run input).
        previous_outputs: Outputs of the steps already executed in this run.
        shared_state: Copy of the coordinator's shared state.
        escalation_level: Current escalation level of the run.
        step_run_id: Persisted StepRun id, when one exists.
    """

    org_id: str
    run_id: str
    playbook_id: str
    step: PlaybookStep
    input: Any = None
    previous_outputs: Dict[str, Any] = field(default_factory=dict)
    shared_state: Dict[str, Any] = field(default_factory=dict)
    escalation_level: EscalationLevel = EscalationLevel.NONE
    step_run_id: Optional[str] = None


@dataclass
class StepOutcome:
    """Result of a handler.

    A skipped outcome marks the StepRun SKIPPED and ends the run there.
    """

    output: Any = None
    skipped: bool = False
    skip_reason: Optional[str] = None


class StepHandler(ABC):
    """Executes one step type."""

    @property
    @abstractmethod
    def step_type(self) -> StepType:
        ...

    @abstractmethod
    def execute(self, ctx: StepExecutionContext) -> StepOutcome:
        """Run the step and return its outcome.

        Raises:
            PlaybookEngineError: For misconfiguration or unmatched branches.
            Exception: Anything else; the executor wraps it as a step failure.
        """
        ...
