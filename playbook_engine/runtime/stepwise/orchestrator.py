"""
orchestrator.py - Playbook run controller.

PlaybookRunController owns the run lifecycle end to end:

1. Load the immutable playbook definition.
2. Create the Run (PENDING), then move it to RUNNING.
3. Loop: create the StepRun, execute the step, merge its output into the
   run's CollaborationCoordinator, persist the StepRun SUCCEEDED with a
   context snapshot, record memory, then ask the coordinator for the next
   step.
4. Write exactly one terminal status: SUCCEEDED with ``{step_key: output}``,
   or FAILED with ``{kind, message, stack, step_key}`` and no output.

Guards:
    - A step key visited twice fails the run with CycleDetected.
    - More than ``max_steps`` dispatches fails the run with CycleDetected.
    - A next key missing from the playbook fails the run with StepNotFound.

Redrive (``run_playbook``) re-enters a non-terminal run. Persisted StepRuns
are replayed along the same traversal: SUCCEEDED ones contribute their
outputs and restore the coordinator from their snapshot, a StepRun left
PENDING or RUNNING is resumed in place, and a FAILED one fails the run with
its recorded error. No step is executed twice.

Each run executes sequentially in the calling thread. Runs on different
threads share only the repositories; every run gets its own coordinator.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import (
    CycleDetected,
    DefinitionNotFound,
    InvalidRunState,
    InvalidStepConfig,
    PlaybookNotActive,
    RunNotFound,
    StepNotFound,
    error_kind,
    error_to_dict,
)
from ..storage import (
    EventSink,
    NullEventSink,
    PlaybookRepository,
    RunRepository,
    StepRunRepository,
)
from ..types import (
    PlaybookDefinition,
    PlaybookRun,
    PlaybookStatus,
    PlaybookStep,
    PlaybookStepRun,
    RunEvent,
    RunStatus,
    RunWithSteps,
    StepRunStatus,
    collect_final_output,
    generate_id,
    generate_run_id,
)
from ..types._time import _utcnow
from ..types.events import (
    ROUTE_DECISION,
    RUN_CANCELLED,
    RUN_COMPLETED,
    RUN_CREATED,
    RUN_STARTED,
    STEP_END,
    STEP_START,
)
from .coordinator import CollaborationCoordinator
from .executor import StepExecutor
from .handlers import StepExecutionContext
from .memory import MemoryRecorder

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 100


@dataclass(frozen=True)
class RunOptions:
    """Per-run options for ``start_playbook_run``.

    Attributes:
        require_active: Refuse to start unless the playbook is ACTIVE.
        max_steps: Override the controller's dispatch budget for this run.
    """

    require_active: bool = False
    max_steps: Optional[int] = None


class _RecordedStepFailure(Exception):
    """A persisted FAILED StepRun found while replaying a redriven run."""

    def __init__(self, step_run: PlaybookStepRun):
        super().__init__(f"Step '{step_run.step_key}' previously failed")
        self.step_run = step_run


class PlaybookRunController:
    """Runs playbooks as durable, resumable runs.

    All collaborators are injected; see ``runtime.factory.build_controller``
    for the configuration-driven assembly.
    """

    def __init__(
        self,
        *,
        playbooks: PlaybookRepository,
        runs: RunRepository,
        step_runs: StepRunRepository,
        executor: StepExecutor,
        memory: MemoryRecorder,
        events: Optional[EventSink] = None,
        max_steps: int = DEFAULT_MAX_STEPS,
    ):
        self._playbooks = playbooks
        self._runs = runs
        self._step_runs = step_runs
        self._executor = executor
        self._memory = memory
        self._events = events or NullEventSink()
        self._max_steps = max_steps

    @property
    def playbooks(self) -> PlaybookRepository:
        return self._playbooks

    @property
    def executor(self) -> StepExecutor:
        return self._executor

    @property
    def events(self) -> EventSink:
        return self._events

    @property
    def max_steps(self) -> int:
        return self._max_steps

    # =========================================================================
    # Public API
    # =========================================================================

    def start_playbook_run(
        self,
        org_id: str,
        playbook_id: str,
        input: Any = None,
        actor: Optional[str] = None,
        options: Optional[RunOptions] = None,
    ) -> RunWithSteps:
        """Create a run for ``playbook_id`` and execute it to a terminal status.

        A stored definition whose step configs no longer validate still gets
        a run; it fails with InvalidStepConfig before any step executes.

        Raises:
            DefinitionNotFound: No such playbook for this org (no run is created).
            PlaybookNotActive: ``options.require_active`` and the playbook is not ACTIVE.
        """
        options = options or RunOptions()
        try:
            definition = self._load_definition(org_id, playbook_id)
        except InvalidStepConfig as exc:
            run = self._create_run(org_id, playbook_id, input, actor, options)
            return self._fail_unloadable(run, exc)

        if options.require_active and definition.playbook.status is not PlaybookStatus.ACTIVE:
            raise PlaybookNotActive(
                f"Playbook {playbook_id} is {definition.playbook.status.value}, not ACTIVE"
            )

        run = self._create_run(org_id, playbook_id, input, actor, options)
        logger.debug(
            "Run %s uses playbook %s v%d", run.id, playbook_id, definition.playbook.version
        )
        return self._execute(definition, run, run.max_steps or self._max_steps)

    def run_playbook(self, org_id: str, run_id: str) -> RunWithSteps:
        """Re-enter an existing run (redrive) and continue it to a terminal status.

        The redrive keeps the dispatch budget the run was started with.

        Raises:
            RunNotFound: No such run for this org.
            InvalidRunState: The run is already terminal.
            DefinitionNotFound: The run's playbook no longer exists.
        """
        run = self._require_run(org_id, run_id)
        if run.status.is_terminal:
            raise InvalidRunState(f"Run {run_id} is already {run.status.value}")
        try:
            definition = self._load_definition(org_id, run.playbook_id)
        except InvalidStepConfig as exc:
            return self._fail_unloadable(run, exc)
        logger.info("Redriving run %s from status %s", run_id, run.status.value)
        return self._execute(definition, run, run.max_steps or self._max_steps)

    def cancel_run(self, org_id: str, run_id: str) -> PlaybookRun:
        """Mark a non-terminal run CANCELLED.

        The run loop does not poll for cancellation; a loop that is still
        executing keeps the CANCELLED status when it finishes.
        """
        run = self._require_run(org_id, run_id)
        if run.status.is_terminal:
            raise InvalidRunState(f"Run {run_id} is already {run.status.value}")
        run.transition_to(RunStatus.CANCELLED)
        run.completed_at = _utcnow()
        run = self._runs.update_run(run)
        logger.info("Run %s cancelled", run_id)
        self._emit(run_id, RUN_CANCELLED, payload={"status": run.status.value})
        return run

    def get_run_with_steps(self, org_id: str, run_id: str) -> RunWithSteps:
        run = self._require_run(org_id, run_id)
        return RunWithSteps(run=run, steps=self._step_runs.list_step_runs(org_id, run_id))

    # =========================================================================
    # Run loop
    # =========================================================================

    def _execute(
        self, definition: PlaybookDefinition, run: PlaybookRun, max_steps: int
    ) -> RunWithSteps:
        if run.status is RunStatus.PENDING:
            run.transition_to(RunStatus.RUNNING)
            run.started_at = _utcnow()
            run = self._runs.update_run(run)
            self._emit(run.id, RUN_STARTED, payload={"input": run.input})
        elif run.started_at is None:
            run.started_at = _utcnow()
            run = self._runs.update_run(run)

        try:
            self._drive(definition, run, max_steps)
        except _RecordedStepFailure as failure:
            error = copy.deepcopy(failure.step_run.error) or error_to_dict(
                failure, failure.step_run.step_key
            )
            self._finish(run, RunStatus.FAILED, error=error)
        except Exception as exc:
            step_key = getattr(exc, "step_key", None)
            logger.warning(
                "Run %s failed at step '%s' (%s): %s", run.id, step_key, error_kind(exc), exc
            )
            self._finish(run, RunStatus.FAILED, error=error_to_dict(exc))
        else:
            output = collect_final_output(self._step_runs.list_step_runs(run.org_id, run.id))
            self._finish(run, RunStatus.SUCCEEDED, output=output)

        return self.get_run_with_steps(run.org_id, run.id)

    def _drive(self, definition: PlaybookDefinition, run: PlaybookRun, max_steps: int) -> None:
        existing = {sr.step_key: sr for sr in self._step_runs.list_step_runs(run.org_id, run.id)}
        coordinator = CollaborationCoordinator()
        previous_outputs: Dict[str, Any] = {}
        visited: List[str] = []

        current: Optional[PlaybookStep] = definition.first_step()
        step_input: Any = run.input

        while current is not None:
            if current.key in visited:
                raise CycleDetected(
                    f"Step '{current.key}' revisited"
                    f" (path: {' -> '.join(visited + [current.key])})",
                    step_key=current.key,
                )
            if len(visited) >= max_steps:
                raise CycleDetected(
                    f"Run exceeded max_steps={max_steps}", step_key=current.key
                )
            visited.append(current.key)

            prior = existing.get(current.key)
            if prior is not None and prior.status is StepRunStatus.SUCCEEDED:
                logger.debug("Run %s: replaying succeeded step '%s'", run.id, current.key)
                step_run = prior
                coordinator = CollaborationCoordinator.restore(prior.collaboration_context)
            elif prior is not None and prior.status is StepRunStatus.FAILED:
                raise _RecordedStepFailure(prior)
            elif prior is not None and prior.status is StepRunStatus.SKIPPED:
                return
            else:
                step_run = self._execute_step(
                    definition, run, current, step_input, previous_outputs, coordinator, prior
                )
                if step_run.status is StepRunStatus.SKIPPED:
                    logger.info("Run %s: step '%s' skipped; ending run", run.id, current.key)
                    return

            previous_outputs[current.key] = copy.deepcopy(step_run.output)

            next_key = coordinator.determine_next_step(current, step_run.output)
            self._emit(
                run.id,
                ROUTE_DECISION,
                step_key=current.key,
                payload={"next_step_key": next_key},
            )
            if not next_key:
                return

            next_step = definition.get_step(next_key)
            if next_step is None:
                raise StepNotFound(f"Next step '{next_key}' not found", step_key=current.key)

            current = next_step
            step_input = copy.deepcopy(step_run.output)

    def _execute_step(
        self,
        definition: PlaybookDefinition,
        run: PlaybookRun,
        step: PlaybookStep,
        step_input: Any,
        previous_outputs: Dict[str, Any],
        coordinator: CollaborationCoordinator,
        prior: Optional[PlaybookStepRun],
    ) -> PlaybookStepRun:
        if prior is None:
            step_run = self._step_runs.create_step_run(
                PlaybookStepRun(
                    id=generate_id(),
                    run_id=run.id,
                    playbook_id=definition.playbook.id,
                    org_id=run.org_id,
                    step_id=step.id,
                    step_key=step.key,
                    input=copy.deepcopy(step_input),
                    escalation_level=coordinator.escalation_level,
                )
            )
        else:
            logger.info(
                "Run %s: resuming step '%s' left in %s", run.id, step.key, prior.status.value
            )
            step_run = prior
            step_input = copy.deepcopy(prior.input)

        if step_run.status is StepRunStatus.PENDING:
            step_run.transition_to(StepRunStatus.RUNNING)
            step_run.started_at = _utcnow()
            step_run = self._step_runs.update_step_run(step_run)
        self._emit(run.id, STEP_START, step_key=step.key, payload={"type": step.type.value})

        ctx = StepExecutionContext(
            org_id=run.org_id,
            run_id=run.id,
            playbook_id=definition.playbook.id,
            step=step,
            input=step_input,
            previous_outputs=copy.deepcopy(previous_outputs),
            shared_state=coordinator.shared_state,
            escalation_level=coordinator.escalation_level,
            step_run_id=step_run.id,
        )

        try:
            outcome = self._executor.execute(ctx)
        except Exception as exc:
            step_run.transition_to(StepRunStatus.FAILED)
            step_run.error = error_to_dict(exc, step.key)
            step_run.completed_at = _utcnow()
            self._step_runs.update_step_run(step_run)
            self._emit(
                run.id,
                STEP_END,
                step_key=step.key,
                payload={"status": StepRunStatus.FAILED.value, "error_kind": error_kind(exc)},
            )
            raise

        if outcome.skipped:
            step_run.transition_to(StepRunStatus.SKIPPED)
            step_run.output = outcome.output
            step_run.completed_at = _utcnow()
            step_run = self._step_runs.update_step_run(step_run)
            self._emit(
                run.id,
                STEP_END,
                step_key=step.key,
                payload={"status": StepRunStatus.SKIPPED.value, "reason": outcome.skip_reason},
            )
            return step_run

        coordinator.apply_step_output(step.key, outcome.output)
        step_run.transition_to(StepRunStatus.SUCCEEDED)
        step_run.output = outcome.output
        step_run.collaboration_context = coordinator.snapshot()
        step_run.escalation_level = coordinator.escalation_level
        step_run.completed_at = _utcnow()
        step_run = self._step_runs.update_step_run(step_run)
        self._emit(
            run.id,
            STEP_END,
            step_key=step.key,
            payload={
                "status": StepRunStatus.SUCCEEDED.value,
                "escalation_level": step_run.escalation_level.value,
            },
        )

        self._memory.record_step(
            org_id=run.org_id,
            run_id=run.id,
            step=step,
            step_input=step_input,
            output=step_run.output,
        )
        return step_run

    def _finish(
        self,
        run: PlaybookRun,
        status: RunStatus,
        *,
        output: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Write the single terminal status, unless the run was cancelled meanwhile."""
        latest = self._runs.get_run(run.org_id, run.id) or run
        if latest.status.is_terminal:
            logger.warning(
                "Run %s reached %s but is already %s; keeping %s",
                run.id,
                status.value,
                latest.status.value,
                latest.status.value,
            )
            return

        latest.transition_to(status)
        latest.completed_at = _utcnow()
        if status is RunStatus.SUCCEEDED:
            latest.output = output
            latest.error = None
        else:
            latest.output = None
            latest.error = error
        self._runs.update_run(latest)

        payload: Dict[str, Any] = {"status": status.value}
        if error is not None:
            payload["error_kind"] = error.get("kind")
            payload["step_key"] = error.get("step_key")
        logger.info("Run %s %s", run.id, status.value)
        self._emit(run.id, RUN_COMPLETED, payload=payload)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _create_run(
        self,
        org_id: str,
        playbook_id: str,
        input: Any,
        actor: Optional[str],
        options: RunOptions,
    ) -> PlaybookRun:
        run = self._runs.create_run(
            PlaybookRun(
                id=generate_run_id(),
                playbook_id=playbook_id,
                org_id=org_id,
                status=RunStatus.PENDING,
                triggered_by=actor,
                input=copy.deepcopy(input),
                max_steps=options.max_steps,
            )
        )
        logger.info("Created run %s for playbook %s (org %s)", run.id, playbook_id, org_id)
        self._emit(run.id, RUN_CREATED, payload={"playbook_id": playbook_id, "actor": actor})
        return run

    def _fail_unloadable(self, run: PlaybookRun, exc: InvalidStepConfig) -> RunWithSteps:
        """Fail ``run`` because its stored definition does not validate."""
        logger.warning("Run %s: playbook %s is invalid: %s", run.id, run.playbook_id, exc)
        self._finish(run, RunStatus.FAILED, error=error_to_dict(exc))
        return self.get_run_with_steps(run.org_id, run.id)

    def _load_definition(self, org_id: str, playbook_id: str) -> PlaybookDefinition:
        definition = self._playbooks.get_definition(org_id, playbook_id)
        if definition is None:
            raise DefinitionNotFound(f"Playbook {playbook_id} not found for org {org_id}")
        return definition

    def _require_run(self, org_id: str, run_id: str) -> PlaybookRun:
        run = self._runs.get_run(org_id, run_id)
        if run is None:
            raise RunNotFound(f"Playbook run {run_id} not found")
        return run

    def _emit(
        self,
        run_id: str,
        kind: str,
        *,
        step_key: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        event = RunEvent(
            run_id=run_id,
            ts=_utcnow(),
            kind=kind,
            step_key=step_key,
            payload=copy.deepcopy(payload or {}),
        )
        try:
            self._events.emit(event)
        except Exception as e:
            logger.warning("Failed to emit %s event for run %s: %s", kind, run_id, e)
