"""
coordinator.py - Per-run collaboration state.

The CollaborationCoordinator owns one run's shared state and escalation
level. After a step succeeds, the run controller hands its output to
``apply_step_output``:

- ``sharedState``: a dict patch merged key by key into the shared state.
- ``escalation``: a level string (``"supervisor"``) or a request object
  ``{"level": ..., "reason": ..., "reset": bool}``. Requests below the
  current level are ignored, so the level never decreases within a run.
- ``escalationReset: true`` (or ``reset`` in the request object) drops the
  level back to ``none`` before any new request is applied.

``determine_next_step`` wraps the next-step resolver and turns a ``human``
level into HumanEscalationRequired.

One coordinator exists per run; it is never shared between runs.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Mapping, Optional

from ..errors import HumanEscalationRequired
from ..types import (
    CollaborationContext,
    CollaborationMessage,
    EscalationLevel,
    MessageType,
    PlaybookStep,
    collaboration_context_from_dict,
    collaboration_context_to_dict,
)
from .routing import resolve_next_step_key

logger = logging.getLogger(__name__)


class CollaborationCoordinator:
    def __init__(self, context: Optional[CollaborationContext] = None):
        self._context = context or CollaborationContext()
        self._escalation_reason: Optional[str] = None

    @classmethod
    def restore(cls, snapshot: Optional[Dict[str, Any]]) -> "CollaborationCoordinator":
        """Rebuild a coordinator from a StepRun's context snapshot (redrive)."""
        return cls(collaboration_context_from_dict(snapshot))

    @property
    def shared_state(self) -> Dict[str, Any]:
        return copy.deepcopy(self._context.shared_state)

    @property
    def escalation_level(self) -> EscalationLevel:
        return self._context.escalation_level

    @property
    def escalation_reason(self) -> Optional[str]:
        return self._escalation_reason

    @property
    def messages(self) -> List[CollaborationMessage]:
        return list(self._context.messages)

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the context, as persisted on each StepRun."""
        return collaboration_context_to_dict(self._context)

    # =========================================================================
    # Step output handling
    # =========================================================================

    def apply_step_output(self, step_key: str, output: Any) -> None:
        """Merge a shared-state patch and apply any escalation request."""
        if not isinstance(output, Mapping):
            return

        patch = output.get("sharedState")
        if isinstance(patch, Mapping):
            self.merge_shared_state(patch)
        elif patch is not None:
            logger.warning(
                "Step '%s' returned non-object sharedState (%s); ignoring",
                step_key,
                type(patch).__name__,
            )

        request = output.get("escalation")
        reset = output.get("escalationReset") is True or output.get("escalation_reset") is True
        level: Optional[EscalationLevel] = None
        reason: Optional[str] = None

        if isinstance(request, Mapping):
            reset = reset or request.get("reset") is True
            level = self._parse_level(step_key, request.get("level"))
            reason = request.get("reason")
        elif request is not None:
            level = self._parse_level(step_key, request)

        if reset:
            self._reset_escalation(step_key)
        if level is not None:
            self.escalate(step_key, level, reason)

    def merge_shared_state(self, patch: Mapping[str, Any]) -> None:
        for key, value in patch.items():
            self._context.shared_state[key] = copy.deepcopy(value)

    def escalate(self, step_key: str, level: EscalationLevel, reason: Optional[str] = None) -> bool:
        """Raise the level to ``level``. Returns False if it would lower it."""
        current = self._context.escalation_level
        if level.rank < current.rank:
            logger.debug(
                "Step '%s' requested escalation '%s' below current '%s'; ignoring",
                step_key,
                level.value,
                current.value,
            )
            return False
        if level is current:
            return True

        self._context.escalation_level = level
        self._escalation_reason = reason
        self.record_message(
            step_key,
            MessageType.ESCALATION,
            payload={"from": current.value, "to": level.value, "reason": reason},
        )
        logger.info(
            "Escalation raised by step '%s': %s -> %s", step_key, current.value, level.value
        )
        return True

    def _reset_escalation(self, step_key: str) -> None:
        current = self._context.escalation_level
        if current is EscalationLevel.NONE:
            return
        self._context.escalation_level = EscalationLevel.NONE
        self._escalation_reason = None
        self.record_message(
            step_key,
            MessageType.ESCALATION,
            payload={"from": current.value, "to": EscalationLevel.NONE.value, "reset": True},
        )
        logger.info("Escalation reset by step '%s' (was %s)", step_key, current.value)

    def _parse_level(self, step_key: str, value: Any) -> Optional[EscalationLevel]:
        if value is None:
            return None
        try:
            return EscalationLevel.parse(value)
        except ValueError:
            logger.warning(
                "Step '%s' requested unknown escalation level %r; ignoring", step_key, value
            )
            return None

    def record_message(
        self,
        from_step_key: str,
        message_type: MessageType,
        payload: Any = None,
        to_step_key: Optional[str] = None,
    ) -> CollaborationMessage:
        """Append a collaboration message (delegation and escalation log)."""
        message = CollaborationMessage(
            from_step_key=from_step_key,
            type=message_type,
            to_step_key=to_step_key,
            payload=copy.deepcopy(payload),
        )
        self._context.messages.append(message)
        return message

    # =========================================================================
    # Routing
    # =========================================================================

    def determine_next_step(self, step: PlaybookStep, output: Any) -> Optional[str]:
        """Next step key, or None to finish.

        Raises:
            HumanEscalationRequired: If the run has escalated to ``human``.
        """
        if self._context.escalation_level is EscalationLevel.HUMAN:
            reason = self._escalation_reason
            message = f"Step '{step.key}' escalated to human"
            if reason:
                message = f"{message}: {reason}"
            raise HumanEscalationRequired(message, step_key=step.key, reason=reason)
        return resolve_next_step_key(step, output)
