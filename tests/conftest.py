"""
Test fixtures and helpers for the playbook engine tests.

This module provides reusable fixtures for building playbook definitions,
in-memory stores, controllers, and scripted capability providers.
"""

import json
import threading
from typing import Any, Callable, Dict, List, Optional

import pytest

from playbook_engine.config.runtime_config import EngineSettings, reset_config
from playbook_engine.runtime.factory import build_controller
from playbook_engine.runtime.providers import (
    EmbeddingProvider,
    GenerationProvider,
    GenerationRequest,
    GenerationResult,
)
from playbook_engine.runtime.storage import InMemoryEventSink, InMemoryStore
from playbook_engine.runtime.types import (
    Playbook,
    PlaybookDefinition,
    PlaybookStatus,
    PlaybookStep,
    playbook_step_from_dict,
)

ORG = "org-1"
PLAYBOOK_ID = "pb-1"


# ============================================================================
# Definition Builders
# ============================================================================


def make_step(
    key: str,
    step_type: str,
    config: Dict[str, Any],
    position: int = 0,
    next_step_key: Optional[str] = None,
) -> PlaybookStep:
    """Build a validated step the way stored definitions are parsed."""
    return playbook_step_from_dict(
        {
            "key": key,
            "type": step_type,
            "config": config,
            "position": position,
            "nextStepKey": next_step_key,
        }
    )


def make_definition(
    steps: List[PlaybookStep],
    playbook_id: str = PLAYBOOK_ID,
    org_id: str = ORG,
    status: PlaybookStatus = PlaybookStatus.ACTIVE,
) -> PlaybookDefinition:
    return PlaybookDefinition(
        playbook=Playbook(
            id=playbook_id, org_id=org_id, name=f"Playbook {playbook_id}", status=status
        ),
        steps=tuple(steps),
    )


def linear_transform_chain(count: int, prefix: str = "s") -> List[PlaybookStep]:
    """``count`` DATA transform steps chained by static next keys."""
    keys = [f"{prefix}{i}" for i in range(1, count + 1)]
    return [
        make_step(
            key,
            "DATA",
            {"operation": "transform"},
            position=i,
            next_step_key=keys[i + 1] if i + 1 < count else None,
        )
        for i, key in enumerate(keys)
    ]


# ============================================================================
# Scripted Providers
# ============================================================================


class FailingGenerationProvider(GenerationProvider):
    """Generation provider that always raises."""

    def __init__(self) -> None:
        self.calls = 0

    @property
    def provider_id(self) -> str:
        return "failing"

    def generate(self, request: GenerationRequest) -> GenerationResult:
        self.calls += 1
        raise RuntimeError("provider unavailable")


class ScriptedGenerationProvider(GenerationProvider):
    """Returns completions built by a callback (or a fixed table by agent id)."""

    def __init__(
        self,
        completions: Optional[Dict[str, str]] = None,
        respond: Optional[Callable[[GenerationRequest], str]] = None,
    ) -> None:
        self._completions = dict(completions or {})
        self._respond = respond
        self.requests: List[GenerationRequest] = []
        self._lock = threading.Lock()

    @property
    def provider_id(self) -> str:
        return "scripted"

    def generate(self, request: GenerationRequest) -> GenerationResult:
        with self._lock:
            self.requests.append(request)
        if self._respond is not None:
            completion = self._respond(request)
        else:
            completion = self._completions.get(request.agent_id, "")
        return GenerationResult(
            completion=completion,
            model=request.model or "scripted-model",
            provider="scripted",
            usage={"total_tokens": len(completion)},
        )


class FailingEmbeddingProvider(EmbeddingProvider):
    @property
    def dimensions(self) -> int:
        return 8

    def embed(self, payload: Any) -> List[float]:
        raise ConnectionError("embedding service down")


def json_completion(**payload: Any) -> str:
    return json.dumps(payload)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _reset_runtime_config():
    """Clear the cached runtime.yaml before and after each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def events() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def make_controller(settings, store, events):
    """Factory fixture: build a controller over the shared store and sink."""

    def _make(**overrides):
        overrides.setdefault("events", events)
        return build_controller(settings, store=store, **overrides)

    return _make


@pytest.fixture
def controller(make_controller):
    return make_controller()
