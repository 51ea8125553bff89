"""
types - Core type definitions for the playbook runtime.

This package provides the data types shared by the run controller, the step
handlers, the repositories and the HTTP surface: playbook definitions with
tagged-union step configs, run and step-run records, collaboration state,
memory records and run events.

Usage:
    from playbook_engine.runtime.types import (
        Playbook, PlaybookStep, PlaybookDefinition, StepType,
        AgentStepConfig, DataStepConfig, BranchStepConfig, ApiStepConfig,
        PlaybookRun, PlaybookStepRun, RunWithSteps, RunStatus, StepRunStatus,
        CollaborationContext, EscalationLevel,
        EpisodicTrace, SemanticMemory, RunEvent,
    )
"""

from __future__ import annotations

from ._ids import OrgId, PlaybookId, RunId, StepRunId, generate_id, generate_run_id
from .collaboration import (
    CollaborationContext,
    CollaborationMessage,
    EscalationLevel,
    MessageType,
    collaboration_context_from_dict,
    collaboration_context_to_dict,
)
from .events import RunEvent, run_event_from_dict, run_event_to_dict
from .memory import (
    EpisodicTrace,
    SemanticMemory,
    episodic_trace_to_dict,
    semantic_memory_to_dict,
)
from .playbooks import (
    AgentStepConfig,
    ApiStepConfig,
    BranchCondition,
    BranchStepConfig,
    DataStepConfig,
    MemoryCapture,
    Playbook,
    PlaybookDefinition,
    PlaybookStatus,
    PlaybookStep,
    StepConfig,
    StepType,
    parse_step_config,
    playbook_definition_from_dict,
    playbook_definition_to_dict,
    playbook_step_from_dict,
    playbook_step_to_dict,
)
from .runs import (
    PlaybookRun,
    PlaybookStepRun,
    RunStatus,
    RunWithSteps,
    StepRunStatus,
    collect_final_output,
    playbook_run_to_dict,
    run_with_steps_to_dict,
    step_run_to_dict,
)

__all__ = [
    # IDs
    "OrgId",
    "PlaybookId",
    "RunId",
    "StepRunId",
    "generate_id",
    "generate_run_id",
    # Playbooks
    "AgentStepConfig",
    "ApiStepConfig",
    "BranchCondition",
    "BranchStepConfig",
    "DataStepConfig",
    "MemoryCapture",
    "Playbook",
    "PlaybookDefinition",
    "PlaybookStatus",
    "PlaybookStep",
    "StepConfig",
    "StepType",
    "parse_step_config",
    "playbook_definition_from_dict",
    "playbook_definition_to_dict",
    "playbook_step_from_dict",
    "playbook_step_to_dict",
    # Runs
    "PlaybookRun",
    "PlaybookStepRun",
    "RunStatus",
    "RunWithSteps",
    "StepRunStatus",
    "collect_final_output",
    "playbook_run_to_dict",
    "run_with_steps_to_dict",
    "step_run_to_dict",
    # Collaboration
    "CollaborationContext",
    "CollaborationMessage",
    "EscalationLevel",
    "MessageType",
    "collaboration_context_from_dict",
    "collaboration_context_to_dict",
    # Memory
    "EpisodicTrace",
    "SemanticMemory",
    "episodic_trace_to_dict",
    "semantic_memory_to_dict",
    # Events
    "RunEvent",
    "run_event_from_dict",
    "run_event_to_dict",
]
