"""Memory types written by the memory integration after each step."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ._ids import OrgId, RunId, generate_id
from ._time import _datetime_to_iso, _utcnow


@dataclass
class EpisodicTrace:
    """Per-step execution log entry used as working memory.

    Attributes:
        run_id: Run the step belongs to.
        org_id: Owning organization.
        step_key: Step that produced the trace.
        content: ``{"input": ..., "output": ...}`` of the step.
        embedding: Vector for the content; zeros when embedding failed.
    """

    run_id: RunId
    org_id: OrgId
    step_key: str
    content: Dict[str, Any]
    embedding: List[float]
    id: str = field(default_factory=generate_id)
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class SemanticMemory:
    """Importance-weighted fact extracted from a step output."""

    org_id: OrgId
    content: Dict[str, Any]
    embedding: List[float]
    importance: float
    scope: str
    run_id: Optional[RunId] = None
    step_key: Optional[str] = None
    ttl_seconds: Optional[int] = None
    source: str = "step"
    id: str = field(default_factory=generate_id)
    created_at: datetime = field(default_factory=_utcnow)


def episodic_trace_to_dict(trace: EpisodicTrace) -> Dict[str, Any]:
    return {
        "id": trace.id,
        "runId": trace.run_id,
        "orgId": trace.org_id,
        "stepKey": trace.step_key,
        "content": trace.content,
        "embedding": list(trace.embedding),
        "createdAt": _datetime_to_iso(trace.created_at),
    }


def semantic_memory_to_dict(memory: SemanticMemory) -> Dict[str, Any]:
    return {
        "id": memory.id,
        "orgId": memory.org_id,
        "runId": memory.run_id,
        "stepKey": memory.step_key,
        "content": memory.content,
        "embedding": list(memory.embedding),
        "importance": memory.importance,
        "scope": memory.scope,
        "ttlSeconds": memory.ttl_seconds,
        "source": memory.source,
        "createdAt": _datetime_to_iso(memory.created_at),
    }
