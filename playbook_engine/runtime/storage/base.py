"""
base.py - Repository interfaces over the durable store.

The run controller only talks to these ABCs. Implementations must give
read-your-writes consistency per call and must return copies, so a caller
mutating a returned record never changes stored state without an explicit
update.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ..types import (
    EpisodicTrace,
    PlaybookDefinition,
    PlaybookRun,
    PlaybookStepRun,
    RunEvent,
    SemanticMemory,
)


class PlaybookRepository(ABC):
    """Read access to immutable playbook definitions."""

    @abstractmethod
    def get_definition(self, org_id: str, playbook_id: str) -> Optional[PlaybookDefinition]:
        """Return the playbook and its steps, or None if absent for this org."""
        ...

    @abstractmethod
    def save_definition(self, definition: PlaybookDefinition) -> None:
        """Store a definition (authoring-side; the engine never calls this)."""
        ...


class RunRepository(ABC):
    @abstractmethod
    def create_run(self, run: PlaybookRun) -> PlaybookRun:
        ...

    @abstractmethod
    def get_run(self, org_id: str, run_id: str) -> Optional[PlaybookRun]:
        ...

    @abstractmethod
    def update_run(self, run: PlaybookRun) -> PlaybookRun:
        ...


class StepRunRepository(ABC):
    @abstractmethod
    def create_step_run(self, step_run: PlaybookStepRun) -> PlaybookStepRun:
        """Insert a step run. Raises InvalidRunState if run+step already exists."""
        ...

    @abstractmethod
    def get_step_run(self, step_run_id: str) -> Optional[PlaybookStepRun]:
        ...

    @abstractmethod
    def update_step_run(self, step_run: PlaybookStepRun) -> PlaybookStepRun:
        ...

    @abstractmethod
    def list_step_runs(self, org_id: str, run_id: str) -> List[PlaybookStepRun]:
        """Step runs of a run in creation order."""
        ...


class MemoryRepository(ABC):
    @abstractmethod
    def save_episodic_trace(self, trace: EpisodicTrace) -> None:
        ...

    @abstractmethod
    def save_semantic_memory(self, memory: SemanticMemory) -> None:
        ...

    @abstractmethod
    def list_episodic_traces(self, org_id: str, run_id: str) -> List[EpisodicTrace]:
        ...

    @abstractmethod
    def list_semantic_memories(self, org_id: str) -> List[SemanticMemory]:
        ...


class EventSink(ABC):
    """Destination for run events. Emission failures must not raise."""

    @abstractmethod
    def emit(self, event: RunEvent) -> None:
        ...
