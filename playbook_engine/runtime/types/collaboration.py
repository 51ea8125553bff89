"""Collaboration types shared between steps of one run.

The collaboration context is the cross-step working state a run carries:
a shared-state map that steps patch, an escalation level that only moves
upward unless explicitly reset, and a log of collaboration messages.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ._time import _datetime_to_iso, _iso_to_datetime, _utcnow


class EscalationLevel(str, Enum):
    """Escalation severity, ordered from NONE to HUMAN."""

    NONE = "none"
    PEER = "peer"
    SUPERVISOR = "supervisor"
    HUMAN = "human"

    @property
    def rank(self) -> int:
        return _ESCALATION_ORDER.index(self)

    @classmethod
    def parse(cls, value: Any) -> "EscalationLevel":
        """Parse a level, accepting the legacy ``agent`` alias for ``peer``."""
        if isinstance(value, EscalationLevel):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered == "agent":
                return cls.PEER
            return cls(lowered)
        raise ValueError(f"Invalid escalation level: {value!r}")


_ESCALATION_ORDER = [
    EscalationLevel.NONE,
    EscalationLevel.PEER,
    EscalationLevel.SUPERVISOR,
    EscalationLevel.HUMAN,
]


class MessageType(str, Enum):
    REQUEST = "request"
    RESPONSE = "response"
    ESCALATION = "escalation"
    DELEGATION = "delegation"


@dataclass
class CollaborationMessage:
    """One inter-agent message recorded on the collaboration context."""

    from_step_key: str
    type: MessageType
    to_step_key: Optional[str] = None
    payload: Any = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class CollaborationContext:
    """Cross-step state of a single run.

    Attributes:
        shared_state: Key/value map merged (never replaced) across steps.
        escalation_level: Current escalation severity.
        messages: Collaboration message log, in arrival order.
    """

    shared_state: Dict[str, Any] = field(default_factory=dict)
    escalation_level: EscalationLevel = EscalationLevel.NONE
    messages: List[CollaborationMessage] = field(default_factory=list)


# =============================================================================
# Serialization Functions
# =============================================================================


def collaboration_message_to_dict(message: CollaborationMessage) -> Dict[str, Any]:
    return {
        "fromStepKey": message.from_step_key,
        "toStepKey": message.to_step_key,
        "type": message.type.value,
        "payload": copy.deepcopy(message.payload),
        "timestamp": _datetime_to_iso(message.timestamp),
    }


def collaboration_message_from_dict(data: Dict[str, Any]) -> CollaborationMessage:
    return CollaborationMessage(
        from_step_key=data["fromStepKey"],
        to_step_key=data.get("toStepKey"),
        type=MessageType(data["type"]),
        payload=data.get("payload"),
        timestamp=_iso_to_datetime(data.get("timestamp")) or _utcnow(),
    )


def collaboration_context_to_dict(context: CollaborationContext) -> Dict[str, Any]:
    """Convert CollaborationContext to a JSON-safe snapshot dictionary."""
    return {
        "sharedState": copy.deepcopy(context.shared_state),
        "escalationLevel": context.escalation_level.value,
        "messages": [collaboration_message_to_dict(m) for m in context.messages],
    }


def collaboration_context_from_dict(data: Optional[Dict[str, Any]]) -> CollaborationContext:
    """Parse a snapshot dictionary back into a CollaborationContext."""
    if not data:
        return CollaborationContext()
    return CollaborationContext(
        shared_state=copy.deepcopy(data.get("sharedState") or {}),
        escalation_level=EscalationLevel.parse(data.get("escalationLevel", "none")),
        messages=[collaboration_message_from_dict(m) for m in data.get("messages", [])],
    )
