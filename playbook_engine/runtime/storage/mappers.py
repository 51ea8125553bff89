"""
mappers.py - Row <-> domain mapping for persisted records.

Rows are flat dictionaries keyed by column name: JSON payload columns
(input, output, error, collaboration_context, config, content, embedding)
hold JSON text, timestamps hold ISO-8601 UTC strings with a ``Z`` suffix.
Mapping a row this store wrote to a domain record and back reproduces the
row exactly. Rows written elsewhere round-trip to equal values but
normalized text: JSON is re-encoded with ``json.dumps`` spacing and
timestamps are re-serialized by ``datetime.isoformat`` with a ``Z`` suffix.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from ..types import (
    EpisodicTrace,
    EscalationLevel,
    Playbook,
    PlaybookRun,
    PlaybookStatus,
    PlaybookStep,
    PlaybookStepRun,
    RunStatus,
    SemanticMemory,
    StepRunStatus,
    StepType,
    parse_step_config,
)
from ..types._time import _datetime_to_iso, _iso_to_datetime

Row = Dict[str, Any]


def _dump(value: Any) -> Optional[str]:
    """Encode a JSON payload column; None stays SQL NULL."""
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def _load(value: Any) -> Any:
    """Decode a JSON payload column (tolerates already-decoded values)."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        return json.loads(value)
    return value


# =============================================================================
# Runs
# =============================================================================


def playbook_run_to_row(run: PlaybookRun) -> Row:
    return {
        "id": run.id,
        "playbook_id": run.playbook_id,
        "org_id": run.org_id,
        "status": run.status.value,
        "triggered_by": run.triggered_by,
        "input": _dump(run.input),
        "output": _dump(run.output),
        "error": _dump(run.error),
        "started_at": _datetime_to_iso(run.started_at),
        "completed_at": _datetime_to_iso(run.completed_at),
        "created_at": _datetime_to_iso(run.created_at),
        "updated_at": _datetime_to_iso(run.updated_at),
        "max_steps": run.max_steps,
    }


def playbook_run_from_row(row: Row) -> PlaybookRun:
    return PlaybookRun(
        id=row["id"],
        playbook_id=row["playbook_id"],
        org_id=row["org_id"],
        status=RunStatus(row["status"]),
        triggered_by=row.get("triggered_by"),
        input=_load(row.get("input")),
        output=_load(row.get("output")),
        error=_load(row.get("error")),
        started_at=_iso_to_datetime(row.get("started_at")),
        completed_at=_iso_to_datetime(row.get("completed_at")),
        created_at=_iso_to_datetime(row["created_at"]),
        updated_at=_iso_to_datetime(row["updated_at"]),
        max_steps=int(row["max_steps"]) if row.get("max_steps") is not None else None,
    )


def step_run_to_row(step_run: PlaybookStepRun) -> Row:
    return {
        "id": step_run.id,
        "run_id": step_run.run_id,
        "playbook_id": step_run.playbook_id,
        "org_id": step_run.org_id,
        "step_id": step_run.step_id,
        "step_key": step_run.step_key,
        "status": step_run.status.value,
        "input": _dump(step_run.input),
        "output": _dump(step_run.output),
        "error": _dump(step_run.error),
        "collaboration_context": _dump(step_run.collaboration_context),
        "escalation_level": step_run.escalation_level.value,
        "started_at": _datetime_to_iso(step_run.started_at),
        "completed_at": _datetime_to_iso(step_run.completed_at),
        "created_at": _datetime_to_iso(step_run.created_at),
        "updated_at": _datetime_to_iso(step_run.updated_at),
    }


def step_run_from_row(row: Row) -> PlaybookStepRun:
    return PlaybookStepRun(
        id=row["id"],
        run_id=row["run_id"],
        playbook_id=row["playbook_id"],
        org_id=row["org_id"],
        step_id=row["step_id"],
        step_key=row["step_key"],
        status=StepRunStatus(row["status"]),
        input=_load(row.get("input")),
        output=_load(row.get("output")),
        error=_load(row.get("error")),
        collaboration_context=_load(row.get("collaboration_context")),
        escalation_level=EscalationLevel.parse(row.get("escalation_level") or "none"),
        started_at=_iso_to_datetime(row.get("started_at")),
        completed_at=_iso_to_datetime(row.get("completed_at")),
        created_at=_iso_to_datetime(row["created_at"]),
        updated_at=_iso_to_datetime(row["updated_at"]),
    )


# =============================================================================
# Playbooks
# =============================================================================


def playbook_to_row(playbook: Playbook) -> Row:
    return {
        "id": playbook.id,
        "org_id": playbook.org_id,
        "name": playbook.name,
        "version": playbook.version,
        "status": playbook.status.value,
    }


def playbook_from_row(row: Row) -> Playbook:
    return Playbook(
        id=row["id"],
        org_id=row["org_id"],
        name=row["name"],
        version=int(row["version"]),
        status=PlaybookStatus(row["status"]),
    )


def playbook_step_to_row(playbook: Playbook, step: PlaybookStep) -> Row:
    return {
        "id": step.id,
        "playbook_id": playbook.id,
        "org_id": playbook.org_id,
        "step_key": step.key,
        "name": step.name,
        "type": step.type.value,
        "config": _dump(step.config.to_raw()),
        "position": step.position,
        "next_step_key": step.next_step_key,
    }


def playbook_step_from_row(row: Row) -> PlaybookStep:
    """Rebuild a step; the config is re-validated as on construction."""
    step_type = StepType(row["type"])
    return PlaybookStep(
        key=row["step_key"],
        type=step_type,
        config=parse_step_config(step_type, _load(row["config"]) or {}),
        position=int(row["position"]),
        next_step_key=row.get("next_step_key"),
        id=row.get("id"),
        name=row.get("name"),
    )


# =============================================================================
# Memory
# =============================================================================


def episodic_trace_to_row(trace: EpisodicTrace) -> Row:
    return {
        "id": trace.id,
        "run_id": trace.run_id,
        "org_id": trace.org_id,
        "step_key": trace.step_key,
        "content": _dump(trace.content),
        "embedding": _dump(list(trace.embedding)),
        "created_at": _datetime_to_iso(trace.created_at),
    }


def episodic_trace_from_row(row: Row) -> EpisodicTrace:
    return EpisodicTrace(
        id=row["id"],
        run_id=row["run_id"],
        org_id=row["org_id"],
        step_key=row["step_key"],
        content=_load(row["content"]),
        embedding=_load(row["embedding"]) or [],
        created_at=_iso_to_datetime(row["created_at"]),
    )


def semantic_memory_to_row(memory: SemanticMemory) -> Row:
    return {
        "id": memory.id,
        "org_id": memory.org_id,
        "run_id": memory.run_id,
        "step_key": memory.step_key,
        "content": _dump(memory.content),
        "embedding": _dump(list(memory.embedding)),
        "importance": memory.importance,
        "scope": memory.scope,
        "ttl_seconds": memory.ttl_seconds,
        "source": memory.source,
        "created_at": _datetime_to_iso(memory.created_at),
    }


def semantic_memory_from_row(row: Row) -> SemanticMemory:
    return SemanticMemory(
        id=row["id"],
        org_id=row["org_id"],
        run_id=row.get("run_id"),
        step_key=row.get("step_key"),
        content=_load(row["content"]),
        embedding=_load(row["embedding"]) or [],
        importance=float(row["importance"]),
        scope=row["scope"],
        ttl_seconds=row.get("ttl_seconds"),
        source=row.get("source") or "step",
        created_at=_iso_to_datetime(row["created_at"]),
    )
