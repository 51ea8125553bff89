# playbook_engine/runtime/stepwise/handlers package
# One StepHandler per step type, dispatched by the StepExecutor.

from .agent import AgentStepHandler
from .api import ApiStepHandler
from .base import StepExecutionContext, StepHandler, StepOutcome
from .branch import BranchStepHandler
from .data import DataStepHandler

__all__ = [
    "AgentStepHandler",
    "ApiStepHandler",
    "BranchStepHandler",
    "DataStepHandler",
    "StepExecutionContext",
    "StepHandler",
    "StepOutcome",
]
