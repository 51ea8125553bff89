"""
executor.py - Step type dispatch.

StepExecutor routes a step to the StepHandler registered for its type and
normalizes failures: engine errors keep their kind (InvalidStepConfig,
UnmatchedBranch, ...), anything else becomes StepExecutionFailure with the
original exception as ``__cause__``.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable

from ..errors import PlaybookEngineError, StepExecutionFailure
from ..types import StepType
from .handlers import StepExecutionContext, StepHandler, StepOutcome

logger = logging.getLogger(__name__)


class StepExecutor:
    """Dispatches steps to handlers by type."""

    def __init__(self, handlers: Iterable[StepHandler]):
        self._handlers: Dict[StepType, StepHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: StepHandler) -> None:
        """Register (or replace) the handler for ``handler.step_type``."""
        self._handlers[handler.step_type] = handler

    def handler_for(self, step_type: StepType) -> StepHandler:
        handler = self._handlers.get(step_type)
        if handler is None:
            raise StepExecutionFailure(f"Unknown step type: {step_type.value}")
        return handler

    def execute(self, ctx: StepExecutionContext) -> StepOutcome:
        step = ctx.step
        try:
            handler = self.handler_for(step.type)
            outcome = handler.execute(ctx)
        except PlaybookEngineError as exc:
            if exc.step_key is None:
                exc.step_key = step.key
            raise
        except Exception as exc:
            logger.debug("Step '%s' handler raised %s", step.key, type(exc).__name__)
            raise StepExecutionFailure(
                f"Step '{step.key}' failed: {exc}", step_key=step.key
            ) from exc

        if not isinstance(outcome, StepOutcome):
            raise StepExecutionFailure(
                f"Handler for {step.type.value} returned {type(outcome).__name__}, "
                "expected StepOutcome",
                step_key=step.key,
            )
        return outcome
