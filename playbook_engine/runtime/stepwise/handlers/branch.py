"""
branch.py - BRANCH step handler.

Evaluates an ordered condition list against a prior step's output and
reports the chosen successor in its own output (``nextStepKey``). The first
matching condition wins and no later condition is evaluated.

Operator semantics:
    equals / notEquals: strict equality; booleans never equal numbers and
        strings never equal numbers.
    contains: substring test for strings, membership for lists; other
        sources never match.
    greaterThan / lessThan: numeric comparison after coercion; None and
        non-numeric strings never match.
    exists: the source is not None.
"""

from __future__ import annotations

import logging
import math
import numbers
from typing import Any, Dict, Mapping, Optional, Sequence

from ...errors import UnmatchedBranch
from ...types import BranchCondition, BranchStepConfig, StepType
from .base import StepExecutionContext, StepHandler, StepOutcome

logger = logging.getLogger(__name__)


def resolve_path(value: Any, path: Optional[str]) -> Any:
    """Follow a dotted path (``result.score`` or ``items.0``) into a value."""
    if not path:
        return value
    current = value
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part)
        elif isinstance(current, Sequence) and not isinstance(current, str) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def strict_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, numbers.Number) != isinstance(right, numbers.Number):
        return False
    return left == right


def to_number(value: Any) -> Optional[float]:
    """Coerce to float; None for values without a numeric reading."""
    if value is None:
        return None
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, numbers.Real):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def _as_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def evaluate_condition(condition: BranchCondition, source: Any) -> bool:
    operator = condition.operator
    expected = condition.value

    if operator == "equals":
        return strict_equals(source, expected)
    if operator == "notEquals":
        return not strict_equals(source, expected)
    if operator == "contains":
        if isinstance(source, str):
            return _as_text(expected) in source
        if isinstance(source, (list, tuple)):
            return any(strict_equals(item, expected) for item in source)
        return False
    if operator in ("greaterThan", "lessThan"):
        left, right = to_number(source), to_number(expected)
        if left is None or right is None:
            return False
        return left > right if operator == "greaterThan" else left < right
    if operator == "exists":
        return source is not None
    return False


class BranchStepHandler(StepHandler):
    @property
    def step_type(self) -> StepType:
        return StepType.BRANCH

    def execute(self, ctx: StepExecutionContext) -> StepOutcome:
        config: BranchStepConfig = ctx.step.config
        source = resolve_path(ctx.previous_outputs.get(config.source_key), config.path)

        for index, condition in enumerate(config.conditions):
            if evaluate_condition(condition, source):
                logger.debug(
                    "BRANCH '%s': condition #%d (%s) matched -> %s",
                    ctx.step.key,
                    index,
                    condition.operator,
                    condition.next_step_key,
                )
                output: Dict[str, Any] = {
                    "matched": True,
                    "condition": condition.operator,
                    "conditionIndex": index,
                    "nextStepKey": condition.next_step_key,
                }
                return StepOutcome(output=output)

        if config.default_step_key:
            logger.debug(
                "BRANCH '%s': no condition matched, default -> %s",
                ctx.step.key,
                config.default_step_key,
            )
            return StepOutcome(output={"matched": False, "nextStepKey": config.default_step_key})

        raise UnmatchedBranch(
            "No branch condition matched and no default step provided",
            step_key=ctx.step.key,
        )
