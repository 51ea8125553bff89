"""
memory_store.py - In-process repositories.

InMemoryStore implements every repository interface over plain dictionaries
guarded by one lock. Records are deep-copied on the way in and out so the
store behaves like a durable backend: callers only change stored state
through explicit create/update calls.

Used by tests and by the default ``store: memory`` configuration.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Dict, List, Optional, Tuple

from ..errors import InvalidRunState, RunNotFound
from ..types import (
    EpisodicTrace,
    PlaybookDefinition,
    PlaybookRun,
    PlaybookStepRun,
    SemanticMemory,
)
from .base import MemoryRepository, PlaybookRepository, RunRepository, StepRunRepository

logger = logging.getLogger(__name__)


class InMemoryStore(PlaybookRepository, RunRepository, StepRunRepository, MemoryRepository):
    """Thread-safe dictionary-backed store for definitions, runs and memory."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._definitions: Dict[Tuple[str, str], PlaybookDefinition] = {}
        self._runs: Dict[str, PlaybookRun] = {}
        self._step_runs: Dict[str, PlaybookStepRun] = {}
        self._step_run_order: Dict[str, List[str]] = {}
        self._episodic: List[EpisodicTrace] = []
        self._semantic: List[SemanticMemory] = []

    # -------------------------------------------------------------------------
    # Definitions
    # -------------------------------------------------------------------------

    def save_definition(self, definition: PlaybookDefinition) -> None:
        pb = definition.playbook
        with self._lock:
            self._definitions[(pb.org_id, pb.id)] = definition
        logger.debug("Stored playbook %s/%s (%d steps)", pb.org_id, pb.id, len(definition.steps))

    def get_definition(self, org_id: str, playbook_id: str) -> Optional[PlaybookDefinition]:
        # Definitions are frozen dataclasses; no copy needed.
        with self._lock:
            return self._definitions.get((org_id, playbook_id))

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    def create_run(self, run: PlaybookRun) -> PlaybookRun:
        with self._lock:
            if run.id in self._runs:
                raise InvalidRunState(f"Run {run.id} already exists")
            self._runs[run.id] = copy.deepcopy(run)
            self._step_run_order[run.id] = []
        return copy.deepcopy(run)

    def get_run(self, org_id: str, run_id: str) -> Optional[PlaybookRun]:
        with self._lock:
            run = self._runs.get(run_id)
            if run is None or run.org_id != org_id:
                return None
            return copy.deepcopy(run)

    def update_run(self, run: PlaybookRun) -> PlaybookRun:
        with self._lock:
            if run.id not in self._runs:
                raise RunNotFound(f"Run {run.id} not found")
            self._runs[run.id] = copy.deepcopy(run)
        return copy.deepcopy(run)

    # -------------------------------------------------------------------------
    # Step runs
    # -------------------------------------------------------------------------

    def create_step_run(self, step_run: PlaybookStepRun) -> PlaybookStepRun:
        with self._lock:
            order = self._step_run_order.setdefault(step_run.run_id, [])
            for existing_id in order:
                if self._step_runs[existing_id].step_key == step_run.step_key:
                    raise InvalidRunState(
                        f"Run {step_run.run_id} already has a step run for '{step_run.step_key}'",
                        step_key=step_run.step_key,
                    )
            self._step_runs[step_run.id] = copy.deepcopy(step_run)
            order.append(step_run.id)
        return copy.deepcopy(step_run)

    def get_step_run(self, step_run_id: str) -> Optional[PlaybookStepRun]:
        with self._lock:
            step_run = self._step_runs.get(step_run_id)
            return copy.deepcopy(step_run) if step_run is not None else None

    def update_step_run(self, step_run: PlaybookStepRun) -> PlaybookStepRun:
        with self._lock:
            if step_run.id not in self._step_runs:
                raise RunNotFound(
                    f"Step run {step_run.id} not found", step_key=step_run.step_key
                )
            self._step_runs[step_run.id] = copy.deepcopy(step_run)
        return copy.deepcopy(step_run)

    def list_step_runs(self, org_id: str, run_id: str) -> List[PlaybookStepRun]:
        with self._lock:
            return [
                copy.deepcopy(self._step_runs[sid])
                for sid in self._step_run_order.get(run_id, [])
                if self._step_runs[sid].org_id == org_id
            ]

    # -------------------------------------------------------------------------
    # Memory
    # -------------------------------------------------------------------------

    def save_episodic_trace(self, trace: EpisodicTrace) -> None:
        with self._lock:
            self._episodic.append(copy.deepcopy(trace))

    def save_semantic_memory(self, memory: SemanticMemory) -> None:
        with self._lock:
            self._semantic.append(copy.deepcopy(memory))

    def list_episodic_traces(self, org_id: str, run_id: str) -> List[EpisodicTrace]:
        with self._lock:
            return [
                copy.deepcopy(t)
                for t in self._episodic
                if t.org_id == org_id and t.run_id == run_id
            ]

    def list_semantic_memories(self, org_id: str) -> List[SemanticMemory]:
        with self._lock:
            return [copy.deepcopy(m) for m in self._semantic if m.org_id == org_id]
