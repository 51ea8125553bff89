"""
events.py - Run event sinks.

The run controller emits RunEvents at lifecycle boundaries. Sinks assign a
monotonic per-run sequence number and deliver the event somewhere:

- NullEventSink: discards events.
- InMemoryEventSink: keeps events in a list (tests, API introspection).
- JsonlEventSink: appends one JSON object per line to a log file.
- CompositeEventSink: fans out to several sinks.

Event delivery is non-critical. A sink failure is logged and never reaches
the run state machine.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from ..types import RunEvent, run_event_from_dict, run_event_to_dict
from .base import EventSink

logger = logging.getLogger(__name__)


class _SequenceCounter:
    """Thread-safe per-run counter; sequence numbers start at 1."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sequences: Dict[str, int] = {}

    def next(self, run_id: str) -> int:
        with self._lock:
            seq = self._sequences.get(run_id, 0) + 1
            self._sequences[run_id] = seq
            return seq


class NullEventSink(EventSink):
    def emit(self, event: RunEvent) -> None:
        return None


class InMemoryEventSink(EventSink):
    """Collects events in memory, in emission order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counter = _SequenceCounter()
        self._events: List[RunEvent] = []

    def emit(self, event: RunEvent) -> None:
        with self._lock:
            event.seq = self._counter.next(event.run_id)
            self._events.append(event)

    def events_for_run(self, run_id: str) -> List[RunEvent]:
        with self._lock:
            return [e for e in self._events if e.run_id == run_id]

    @property
    def events(self) -> List[RunEvent]:
        with self._lock:
            return list(self._events)


class JsonlEventSink(EventSink):
    """Appends events to a newline-delimited JSON file.

    Appends for the same run are serialized with a per-run lock, and each
    event gets its sequence number inside that lock, so a run's lines are
    written in seq order even with several emitting threads.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._counter = _SequenceCounter()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_lock = threading.Lock()
        self._file_lock = threading.Lock()

    def _run_lock(self, run_id: str) -> threading.Lock:
        with self._locks_lock:
            lock = self._locks.get(run_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[run_id] = lock
            return lock

    def emit(self, event: RunEvent) -> None:
        with self._run_lock(event.run_id):
            try:
                event.seq = self._counter.next(event.run_id)
                line = json.dumps(run_event_to_dict(event), ensure_ascii=False, default=str)
                with self._file_lock:
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                    with open(self.path, "a", encoding="utf-8") as f:
                        f.write(line + "\n")
                        f.flush()
            except OSError as e:
                logger.warning(
                    "Failed to append event for run '%s' at %s: %s", event.run_id, self.path, e
                )
            except (TypeError, ValueError) as e:
                logger.warning("Failed to serialize event for run '%s': %s", event.run_id, e)

    def read_events(self, run_id: Optional[str] = None) -> List[RunEvent]:
        """Read events back, optionally for one run. Malformed lines are skipped."""
        if not self.path.exists():
            return []
        events: List[RunEvent] = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = run_event_from_dict(json.loads(line))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                    continue
                if run_id is None or event.run_id == run_id:
                    events.append(event)
        return events


class CompositeEventSink(EventSink):
    def __init__(self, sinks: Iterable[EventSink]):
        self._sinks = list(sinks)

    def emit(self, event: RunEvent) -> None:
        for sink in self._sinks:
            try:
                sink.emit(event)
            except Exception as e:
                logger.warning("Event sink %s failed: %s", type(sink).__name__, e)
