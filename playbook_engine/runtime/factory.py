"""
factory.py - Engine assembly.

Builds a PlaybookRunController from EngineSettings with explicit dependency
injection. Every collaborator can be passed in; whatever is not passed is
built from configuration:

1. Explicit arguments
2. Environment variables (PLAYBOOK_ENGINE_*)
3. runtime.yaml
4. Built-in defaults

Capability providers are wrapped in their Fallback adapters here, once, so
step handlers never branch on provider health.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from playbook_engine.config.runtime_config import EngineSettings, get_engine_settings

from .providers import (
    EmbeddingProvider,
    ExternalCallProvider,
    FallbackEmbeddingProvider,
    FallbackExternalCallProvider,
    FallbackGenerationProvider,
    GenerationProvider,
    HttpExternalCallProvider,
    PersonalityProvider,
    StaticPersonalityProvider,
    StubEmbeddingProvider,
    StubExternalCallProvider,
    StubGenerationProvider,
)
from .storage import (
    CompositeEventSink,
    DuckDBStore,
    EventSink,
    InMemoryEventSink,
    InMemoryStore,
    JsonlEventSink,
)
from .stepwise import (
    AgentStepHandler,
    ApiStepHandler,
    BranchStepHandler,
    DataStepHandler,
    MemoryRecorder,
    PlaybookRunController,
    StepExecutor,
)

logger = logging.getLogger(__name__)

Store = Union[InMemoryStore, DuckDBStore]


def build_store(settings: EngineSettings) -> Store:
    """Create the repository backend named by ``settings.store``."""
    if settings.store == "duckdb":
        logger.debug("build_store: duckdb at %s", settings.db_path)
        return DuckDBStore(Path(settings.db_path))
    logger.debug("build_store: in-memory")
    return InMemoryStore()


def build_event_sink(settings: EngineSettings) -> EventSink:
    """In-memory sink, plus a JSONL log when ``events_path`` is configured."""
    memory_sink = InMemoryEventSink()
    if settings.events_path:
        return CompositeEventSink([memory_sink, JsonlEventSink(settings.events_path)])
    return memory_sink


def build_external_call_provider(settings: EngineSettings) -> ExternalCallProvider:
    if settings.external_call_mode == "http":
        return HttpExternalCallProvider(timeout_seconds=settings.http_timeout_seconds)
    return StubExternalCallProvider()


def build_controller(
    settings: Optional[EngineSettings] = None,
    *,
    store: Optional[Store] = None,
    generation: Optional[GenerationProvider] = None,
    embeddings: Optional[EmbeddingProvider] = None,
    personalities: Optional[PersonalityProvider] = None,
    external_calls: Optional[ExternalCallProvider] = None,
    events: Optional[EventSink] = None,
) -> PlaybookRunController:
    """Assemble a PlaybookRunController.

    Args:
        settings: Resolved settings; read from env/runtime.yaml if None.
        store: Repository backend used for definitions, runs, step runs and
            memory. Built from ``settings.store`` if None.
        generation: Generation capability (wrapped in a fallback adapter).
        embeddings: Embedding capability (wrapped in a fallback adapter).
        personalities: Personality lookup; an empty static mapping if None.
        external_calls: External call capability (wrapped in a fallback adapter).
        events: Run event sink.

    Returns:
        A controller with no process-wide state; build one per engine.

    Example:
        >>> store = InMemoryStore()
        >>> store.save_definition(definition)
        >>> controller = build_controller(store=store)
        >>> result = controller.start_playbook_run("org-1", "pb-1", {"topic": "launch"})
    """
    settings = settings or get_engine_settings()
    store = store if store is not None else build_store(settings)

    generation = FallbackGenerationProvider(
        generation or StubGenerationProvider(default_model=settings.default_model),
        StubGenerationProvider(default_model=settings.default_model),
    )
    embeddings = FallbackEmbeddingProvider(
        embeddings or StubEmbeddingProvider(settings.embedding_dimensions),
        settings.embedding_dimensions,
    )
    external_calls = FallbackExternalCallProvider(
        external_calls or build_external_call_provider(settings),
        StubExternalCallProvider(),
    )

    executor = StepExecutor(
        [
            AgentStepHandler(
                generation,
                personalities or StaticPersonalityProvider(),
                default_model=settings.default_model,
                default_temperature=settings.default_temperature,
            ),
            DataStepHandler(),
            BranchStepHandler(),
            ApiStepHandler(external_calls, default_timeout=settings.http_timeout_seconds),
        ]
    )
    memory = MemoryRecorder(
        store,
        embeddings,
        default_importance=settings.default_importance,
        default_scope=settings.default_memory_scope,
    )

    logger.debug(
        "build_controller: store=%s generation=%s external_call=%s max_steps=%d",
        type(store).__name__,
        generation.provider_id,
        settings.external_call_mode,
        settings.max_steps,
    )
    return PlaybookRunController(
        playbooks=store,
        runs=store,
        step_runs=store,
        executor=executor,
        memory=memory,
        events=events if events is not None else build_event_sink(settings),
        max_steps=settings.max_steps,
    )
