"""
playbook_engine.runtime.stepwise - Step-by-step playbook execution.

Package Structure:
    orchestrator.py  - PlaybookRunController (run lifecycle, guards, redrive)
    executor.py      - StepExecutor (type dispatch, failure normalization)
    handlers/        - AGENT, DATA, BRANCH and API step handlers
    routing.py       - Next-step resolution
    coordinator.py   - CollaborationCoordinator (shared state, escalation)
    memory.py        - MemoryRecorder (episodic traces, semantic memory)

Usage:
    from playbook_engine.runtime.factory import build_controller

    controller = build_controller()
    result = controller.start_playbook_run(org_id, playbook_id, {"topic": "launch"})
    print(result.run.status)
"""

from .coordinator import CollaborationCoordinator
from .executor import StepExecutor
from .handlers import (
    AgentStepHandler,
    ApiStepHandler,
    BranchStepHandler,
    DataStepHandler,
    StepExecutionContext,
    StepHandler,
    StepOutcome,
)
from .memory import MemoryRecorder
from .orchestrator import PlaybookRunController, RunOptions
from .routing import resolve_next_step_key

__all__ = [
    "AgentStepHandler",
    "ApiStepHandler",
    "BranchStepHandler",
    "CollaborationCoordinator",
    "DataStepHandler",
    "MemoryRecorder",
    "PlaybookRunController",
    "RunOptions",
    "StepExecutionContext",
    "StepExecutor",
    "StepHandler",
    "StepOutcome",
    "resolve_next_step_key",
]
