"""Run event types.

Events are an observability side channel: the run controller emits them at
lifecycle boundaries, and sinks persist or forward them. Losing an event
never affects run state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ._ids import RunId, _generate_event_id
from ._time import _datetime_to_iso, _iso_to_datetime

# Canonical event kinds, {entity}_{action}
RUN_CREATED = "run_created"
RUN_STARTED = "run_started"
RUN_COMPLETED = "run_completed"
RUN_CANCELLED = "run_cancelled"
STEP_START = "step_start"
STEP_END = "step_end"
ROUTE_DECISION = "route_decision"


@dataclass
class RunEvent:
    """A single event in a run's timeline.

    Attributes:
        run_id: The run this event belongs to.
        ts: Timestamp of the event.
        kind: One of the canonical kinds above.
        step_key: Step the event concerns, if any.
        payload: Event-specific data (statuses, next step, error kind).
        event_id: Globally unique identifier.
        seq: Monotonic sequence number within the run (assigned by the sink).
    """

    run_id: RunId
    ts: datetime
    kind: str
    step_key: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=_generate_event_id)
    seq: int = 0


def run_event_to_dict(event: RunEvent) -> Dict[str, Any]:
    return {
        "event_id": event.event_id,
        "seq": event.seq,
        "run_id": event.run_id,
        "ts": _datetime_to_iso(event.ts),
        "kind": event.kind,
        "step_key": event.step_key,
        "payload": dict(event.payload),
    }


def run_event_from_dict(data: Dict[str, Any]) -> RunEvent:
    return RunEvent(
        run_id=data["run_id"],
        ts=_iso_to_datetime(data["ts"]),
        kind=data["kind"],
        step_key=data.get("step_key"),
        payload=data.get("payload") or {},
        event_id=data.get("event_id") or _generate_event_id(),
        seq=int(data.get("seq", 0)),
    )
