"""
db.py - DuckDB-backed durable store for playbook runs.

This module persists everything the run controller needs to survive a
process restart:
- Playbook definitions and their steps
- Run and step-run records (the resumable state of every run)
- Episodic traces and semantic memories

Design Philosophy:
    - One connection per store, guarded by an RLock (DuckDB connections are
      not safe for concurrent use from several threads)
    - JSON payloads and timestamps are stored as text, so a record read back
      is identical to the record written (see mappers.py)
    - ``(run_id, step_key)`` is unique on step_runs: a step is never
      re-created for the same run

Usage:
    from playbook_engine.runtime.storage.db import DuckDBStore

    store = DuckDBStore(Path(".playbook_engine/engine.duckdb"))
    store.save_definition(definition)
    run = store.get_run(org_id, run_id)
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import duckdb

from ..errors import InvalidRunState, RunNotFound
from ..types import (
    EpisodicTrace,
    PlaybookDefinition,
    PlaybookRun,
    PlaybookStepRun,
    SemanticMemory,
)
from . import mappers
from .base import MemoryRepository, PlaybookRepository, RunRepository, StepRunRepository

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS playbooks (
    id VARCHAR NOT NULL,
    org_id VARCHAR NOT NULL,
    name VARCHAR NOT NULL,
    version INTEGER NOT NULL,
    status VARCHAR NOT NULL,
    PRIMARY KEY (org_id, id)
);

CREATE TABLE IF NOT EXISTS playbook_steps (
    id VARCHAR NOT NULL,
    playbook_id VARCHAR NOT NULL,
    org_id VARCHAR NOT NULL,
    step_key VARCHAR NOT NULL,
    name VARCHAR,
    type VARCHAR NOT NULL,
    config VARCHAR NOT NULL,
    position INTEGER NOT NULL,
    next_step_key VARCHAR,
    PRIMARY KEY (org_id, playbook_id, step_key)
);

CREATE TABLE IF NOT EXISTS runs (
    id VARCHAR PRIMARY KEY,
    playbook_id VARCHAR NOT NULL,
    org_id VARCHAR NOT NULL,
    status VARCHAR NOT NULL,
    triggered_by VARCHAR,
    input VARCHAR,
    output VARCHAR,
    error VARCHAR,
    started_at VARCHAR,
    completed_at VARCHAR,
    created_at VARCHAR NOT NULL,
    updated_at VARCHAR NOT NULL,
    max_steps INTEGER
);

CREATE TABLE IF NOT EXISTS step_runs (
    id VARCHAR PRIMARY KEY,
    run_id VARCHAR NOT NULL,
    playbook_id VARCHAR NOT NULL,
    org_id VARCHAR NOT NULL,
    step_id VARCHAR NOT NULL,
    step_key VARCHAR NOT NULL,
    status VARCHAR NOT NULL,
    input VARCHAR,
    output VARCHAR,
    error VARCHAR,
    collaboration_context VARCHAR,
    escalation_level VARCHAR NOT NULL,
    started_at VARCHAR,
    completed_at VARCHAR,
    created_at VARCHAR NOT NULL,
    updated_at VARCHAR NOT NULL,
    seq INTEGER NOT NULL,
    UNIQUE (run_id, step_key)
);

CREATE TABLE IF NOT EXISTS episodic_traces (
    id VARCHAR PRIMARY KEY,
    run_id VARCHAR NOT NULL,
    org_id VARCHAR NOT NULL,
    step_key VARCHAR NOT NULL,
    content VARCHAR NOT NULL,
    embedding VARCHAR NOT NULL,
    created_at VARCHAR NOT NULL
);

CREATE TABLE IF NOT EXISTS semantic_memories (
    id VARCHAR PRIMARY KEY,
    org_id VARCHAR NOT NULL,
    run_id VARCHAR,
    step_key VARCHAR,
    content VARCHAR NOT NULL,
    embedding VARCHAR NOT NULL,
    importance DOUBLE NOT NULL,
    scope VARCHAR NOT NULL,
    ttl_seconds INTEGER,
    source VARCHAR NOT NULL,
    created_at VARCHAR NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_step_runs_run ON step_runs(run_id);
CREATE INDEX IF NOT EXISTS idx_episodic_run ON episodic_traces(run_id);
CREATE INDEX IF NOT EXISTS idx_semantic_org ON semantic_memories(org_id);
"""

_RUN_COLUMNS = (
    "id", "playbook_id", "org_id", "status", "triggered_by", "input", "output", "error",
    "started_at", "completed_at", "created_at", "updated_at", "max_steps",
)
_STEP_RUN_COLUMNS = (
    "id", "run_id", "playbook_id", "org_id", "step_id", "step_key", "status", "input",
    "output", "error", "collaboration_context", "escalation_level", "started_at",
    "completed_at", "created_at", "updated_at",
)
_STEP_COLUMNS = (
    "id", "playbook_id", "org_id", "step_key", "name", "type", "config", "position",
    "next_step_key",
)
_EPISODIC_COLUMNS = ("id", "run_id", "org_id", "step_key", "content", "embedding", "created_at")
_SEMANTIC_COLUMNS = (
    "id", "org_id", "run_id", "step_key", "content", "embedding", "importance", "scope",
    "ttl_seconds", "source", "created_at",
)


def _insert_sql(table: str, columns: Sequence[str]) -> str:
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"


def _update_sql(table: str, columns: Sequence[str]) -> str:
    assignments = ", ".join(f"{c} = ?" for c in columns if c != "id")
    return f"UPDATE {table} SET {assignments} WHERE id = ?"


class DuckDBStore(PlaybookRepository, RunRepository, StepRunRepository, MemoryRepository):
    """Durable store for definitions, runs, step runs and memory.

    Attributes:
        db_path: Path to the DuckDB file. If None, uses an in-memory database.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path is not None else None
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection, initializing the schema once."""
        if self._connection is None:
            with self._lock:
                if self._connection is None:
                    if self.db_path:
                        self.db_path.parent.mkdir(parents=True, exist_ok=True)
                        conn = duckdb.connect(str(self.db_path))
                    else:
                        conn = duckdb.connect(":memory:")
                    self._init_schema(conn)
                    self._connection = conn
        return self._connection

    def _init_schema(self, conn: duckdb.DuckDBPyConnection) -> None:
        conn.execute(CREATE_TABLES_SQL)
        result = conn.execute(
            "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
        ).fetchone()
        if result is None:
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", [SCHEMA_VERSION])
        elif result[0] < 2:
            # v2: per-run dispatch budget
            conn.execute("ALTER TABLE runs ADD COLUMN IF NOT EXISTS max_steps INTEGER")
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", [SCHEMA_VERSION])
        logger.debug("DuckDBStore schema initialized (schema_version=%d)", SCHEMA_VERSION)

    @contextmanager
    def _transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Run several statements atomically under the store lock."""
        with self._lock:
            conn = self.connection
            conn.execute("BEGIN TRANSACTION")
            try:
                yield conn
            except Exception as e:
                conn.execute("ROLLBACK")
                logger.warning("Database operation failed: %s", e)
                raise
            else:
                conn.execute("COMMIT")

    def _fetch_rows(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        with self._lock:
            cursor = self.connection.execute(sql, list(params))
            columns = [d[0] for d in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def close(self) -> None:
        if self._connection is not None:
            with self._lock:
                self._connection.close()
                self._connection = None

    # =========================================================================
    # Definitions
    # =========================================================================

    def save_definition(self, definition: PlaybookDefinition) -> None:
        pb = definition.playbook
        pb_row = mappers.playbook_to_row(pb)
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM playbook_steps WHERE org_id = ? AND playbook_id = ?",
                [pb.org_id, pb.id],
            )
            conn.execute("DELETE FROM playbooks WHERE org_id = ? AND id = ?", [pb.org_id, pb.id])
            conn.execute(
                _insert_sql("playbooks", tuple(pb_row)), list(pb_row.values())
            )
            for step in definition.steps:
                row = mappers.playbook_step_to_row(pb, step)
                conn.execute(
                    _insert_sql("playbook_steps", _STEP_COLUMNS),
                    [row[c] for c in _STEP_COLUMNS],
                )
        logger.debug("Stored playbook %s/%s (%d steps)", pb.org_id, pb.id, len(definition.steps))

    def get_definition(self, org_id: str, playbook_id: str) -> Optional[PlaybookDefinition]:
        rows = self._fetch_rows(
            "SELECT * FROM playbooks WHERE org_id = ? AND id = ?", [org_id, playbook_id]
        )
        if not rows:
            return None
        step_rows = self._fetch_rows(
            "SELECT * FROM playbook_steps WHERE org_id = ? AND playbook_id = ? "
            "ORDER BY position, step_key",
            [org_id, playbook_id],
        )
        return PlaybookDefinition(
            playbook=mappers.playbook_from_row(rows[0]),
            steps=tuple(mappers.playbook_step_from_row(r) for r in step_rows),
        )

    # =========================================================================
    # Runs
    # =========================================================================

    def create_run(self, run: PlaybookRun) -> PlaybookRun:
        row = mappers.playbook_run_to_row(run)
        with self._lock:
            existing = self.connection.execute(
                "SELECT 1 FROM runs WHERE id = ?", [run.id]
            ).fetchone()
            if existing is not None:
                raise InvalidRunState(f"Run {run.id} already exists")
            self.connection.execute(
                _insert_sql("runs", _RUN_COLUMNS), [row[c] for c in _RUN_COLUMNS]
            )
        return mappers.playbook_run_from_row(row)

    def get_run(self, org_id: str, run_id: str) -> Optional[PlaybookRun]:
        rows = self._fetch_rows("SELECT * FROM runs WHERE id = ? AND org_id = ?", [run_id, org_id])
        return mappers.playbook_run_from_row(rows[0]) if rows else None

    def update_run(self, run: PlaybookRun) -> PlaybookRun:
        row = mappers.playbook_run_to_row(run)
        with self._lock:
            existing = self.connection.execute(
                "SELECT 1 FROM runs WHERE id = ?", [run.id]
            ).fetchone()
            if existing is None:
                raise RunNotFound(f"Run {run.id} not found")
            params = [row[c] for c in _RUN_COLUMNS if c != "id"] + [run.id]
            self.connection.execute(_update_sql("runs", _RUN_COLUMNS), params)
        return mappers.playbook_run_from_row(row)

    # =========================================================================
    # Step runs
    # =========================================================================

    def create_step_run(self, step_run: PlaybookStepRun) -> PlaybookStepRun:
        row = mappers.step_run_to_row(step_run)
        with self._lock:
            existing = self.connection.execute(
                "SELECT 1 FROM step_runs WHERE run_id = ? AND step_key = ?",
                [step_run.run_id, step_run.step_key],
            ).fetchone()
            if existing is not None:
                raise InvalidRunState(
                    f"Run {step_run.run_id} already has a step run for '{step_run.step_key}'",
                    step_key=step_run.step_key,
                )
            seq = self.connection.execute(
                "SELECT COUNT(*) FROM step_runs WHERE run_id = ?", [step_run.run_id]
            ).fetchone()[0]
            self.connection.execute(
                _insert_sql("step_runs", _STEP_RUN_COLUMNS + ("seq",)),
                [row[c] for c in _STEP_RUN_COLUMNS] + [int(seq) + 1],
            )
        return mappers.step_run_from_row(row)

    def get_step_run(self, step_run_id: str) -> Optional[PlaybookStepRun]:
        rows = self._fetch_rows("SELECT * FROM step_runs WHERE id = ?", [step_run_id])
        return mappers.step_run_from_row(rows[0]) if rows else None

    def update_step_run(self, step_run: PlaybookStepRun) -> PlaybookStepRun:
        row = mappers.step_run_to_row(step_run)
        with self._lock:
            existing = self.connection.execute(
                "SELECT 1 FROM step_runs WHERE id = ?", [step_run.id]
            ).fetchone()
            if existing is None:
                raise RunNotFound(
                    f"Step run {step_run.id} not found", step_key=step_run.step_key
                )
            params = [row[c] for c in _STEP_RUN_COLUMNS if c != "id"] + [step_run.id]
            self.connection.execute(_update_sql("step_runs", _STEP_RUN_COLUMNS), params)
        return mappers.step_run_from_row(row)

    def list_step_runs(self, org_id: str, run_id: str) -> List[PlaybookStepRun]:
        rows = self._fetch_rows(
            "SELECT * FROM step_runs WHERE run_id = ? AND org_id = ? ORDER BY seq",
            [run_id, org_id],
        )
        return [mappers.step_run_from_row(r) for r in rows]

    # =========================================================================
    # Memory
    # =========================================================================

    def save_episodic_trace(self, trace: EpisodicTrace) -> None:
        row = mappers.episodic_trace_to_row(trace)
        with self._lock:
            self.connection.execute(
                _insert_sql("episodic_traces", _EPISODIC_COLUMNS),
                [row[c] for c in _EPISODIC_COLUMNS],
            )

    def save_semantic_memory(self, memory: SemanticMemory) -> None:
        row = mappers.semantic_memory_to_row(memory)
        with self._lock:
            self.connection.execute(
                _insert_sql("semantic_memories", _SEMANTIC_COLUMNS),
                [row[c] for c in _SEMANTIC_COLUMNS],
            )

    def list_episodic_traces(self, org_id: str, run_id: str) -> List[EpisodicTrace]:
        rows = self._fetch_rows(
            "SELECT * FROM episodic_traces WHERE org_id = ? AND run_id = ? ORDER BY created_at",
            [org_id, run_id],
        )
        return [mappers.episodic_trace_from_row(r) for r in rows]

    def list_semantic_memories(self, org_id: str) -> List[SemanticMemory]:
        rows = self._fetch_rows(
            "SELECT * FROM semantic_memories WHERE org_id = ? ORDER BY created_at", [org_id]
        )
        return [mappers.semantic_memory_from_row(r) for r in rows]
