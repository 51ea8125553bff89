"""
routing.py - Next-step resolution.

BRANCH steps carry their routing decision in their own output
(``nextStepKey``). Every other step follows the static ``next_step_key``
of its definition. A None result ends the run successfully.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from ..types import PlaybookStep, StepType


def resolve_next_step_key(step: PlaybookStep, output: Any) -> Optional[str]:
    """Return the key of the step to run after ``step``, or None to finish."""
    if step.type is StepType.BRANCH and isinstance(output, Mapping):
        next_key = output.get("nextStepKey")
        if next_key:
            return next_key
    return step.next_step_key or None
