"""DATA step handler: pure transforms over the input or a prior output."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Mapping

from ...errors import InvalidStepConfig
from ...types import DataStepConfig, StepType
from .base import StepExecutionContext, StepHandler, StepOutcome

logger = logging.getLogger(__name__)


class DataStepHandler(StepHandler):
    """Runs pluck, map, merge and transform operations.

    The source is ``previous_outputs[source_key]`` when ``source_key`` is
    set, otherwise the step input. A missing prior output reads as None.
    """

    @property
    def step_type(self) -> StepType:
        return StepType.DATA

    def execute(self, ctx: StepExecutionContext) -> StepOutcome:
        config: DataStepConfig = ctx.step.config
        if config.source_key:
            source = ctx.previous_outputs.get(config.source_key)
        else:
            source = ctx.input

        operation = getattr(self, f"_op_{config.operation}")
        output = operation(ctx, config, copy.deepcopy(source))
        logger.debug("DATA step '%s' applied %s", ctx.step.key, config.operation)
        return StepOutcome(output=output)

    def _op_pluck(
        self, ctx: StepExecutionContext, config: DataStepConfig, source: Any
    ) -> Dict[str, Any]:
        if not config.fields:
            raise InvalidStepConfig(
                'DATA step with operation "pluck" requires "fields" in config',
                step_key=ctx.step.key,
            )
        if not isinstance(source, Mapping):
            raise InvalidStepConfig("Cannot pluck from non-object data", step_key=ctx.step.key)
        return {name: source.get(name) for name in config.fields}

    def _op_map(
        self, ctx: StepExecutionContext, config: DataStepConfig, source: Any
    ) -> Dict[str, Any]:
        if config.mapping is None:
            raise InvalidStepConfig(
                'DATA step with operation "map" requires "mapping" in config',
                step_key=ctx.step.key,
            )
        if not isinstance(source, Mapping):
            raise InvalidStepConfig("Cannot map non-object data", step_key=ctx.step.key)
        return {target: source.get(origin) for target, origin in config.mapping.items()}

    def _op_merge(self, ctx: StepExecutionContext, config: DataStepConfig, source: Any) -> Any:
        # Input keys win over source keys.
        if isinstance(source, Mapping):
            if isinstance(ctx.input, Mapping):
                return {**source, **copy.deepcopy(dict(ctx.input))}
            return source
        return copy.deepcopy(ctx.input)

    def _op_transform(self, ctx: StepExecutionContext, config: DataStepConfig, source: Any) -> Any:
        return source
