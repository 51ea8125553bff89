# playbook_engine/runtime/storage package
# Repository interfaces plus in-memory and DuckDB implementations, and run
# event sinks.

from .base import (
    EventSink,
    MemoryRepository,
    PlaybookRepository,
    RunRepository,
    StepRunRepository,
)
from .db import DuckDBStore
from .events import CompositeEventSink, InMemoryEventSink, JsonlEventSink, NullEventSink
from .memory_store import InMemoryStore

__all__ = [
    "CompositeEventSink",
    "DuckDBStore",
    "EventSink",
    "InMemoryEventSink",
    "InMemoryStore",
    "JsonlEventSink",
    "MemoryRepository",
    "NullEventSink",
    "PlaybookRepository",
    "RunRepository",
    "StepRunRepository",
]
