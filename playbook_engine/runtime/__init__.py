# playbook_engine/runtime package
# Runtime for executing playbooks as durable, resumable runs.
#
# Core components:
#   - types: Core dataclasses (PlaybookDefinition, PlaybookRun, PlaybookStepRun, ...)
#   - errors: Error taxonomy with a `kind` per failure class
#   - providers: Generation/embedding/personality/external-call capabilities
#   - storage: Repository interfaces plus in-memory and DuckDB stores
#   - stepwise: Run controller, step executor, handlers, coordinator, memory
#   - factory: build_controller() assembly from configuration
#
# Usage:
#     from playbook_engine.runtime import build_controller
#     controller = build_controller()
#     result = controller.start_playbook_run(org_id, playbook_id, input)

from .errors import (
    CycleDetected,
    DefinitionNotFound,
    HumanEscalationRequired,
    InvalidRunState,
    InvalidStateTransition,
    InvalidStepConfig,
    PlaybookEngineError,
    PlaybookNotActive,
    RunNotFound,
    StepExecutionFailure,
    StepNotFound,
    UnmatchedBranch,
)
from .factory import build_controller
from .stepwise import PlaybookRunController, RunOptions
from .types import (
    PlaybookDefinition,
    PlaybookRun,
    PlaybookStepRun,
    RunStatus,
    RunWithSteps,
    StepRunStatus,
)

__all__ = [
    # Errors
    "CycleDetected",
    "DefinitionNotFound",
    "HumanEscalationRequired",
    "InvalidRunState",
    "InvalidStateTransition",
    "InvalidStepConfig",
    "PlaybookEngineError",
    "PlaybookNotActive",
    "RunNotFound",
    "StepExecutionFailure",
    "StepNotFound",
    "UnmatchedBranch",
    # Controller
    "PlaybookRunController",
    "RunOptions",
    "build_controller",
    # Types
    "PlaybookDefinition",
    "PlaybookRun",
    "PlaybookStepRun",
    "RunStatus",
    "RunWithSteps",
    "StepRunStatus",
]
