"""
stubs.py - Zero-cost stub capability implementations.

Stubs simulate each capability deterministically without network calls.
They are the default providers in CI and the fallback targets used by the
Fallback* adapters when a real provider fails.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .base import EmbeddingProvider, ExternalCallProvider, GenerationProvider, PersonalityProvider
from .models import ApiCallDescriptor, GenerationRequest, GenerationResult, Personality

logger = logging.getLogger(__name__)

STUB_PROVIDER_ID = "stub"


def stub_completion(agent_id: Optional[str], user_prompt: str) -> str:
    """Templated completion used whenever no real generation is available."""
    return (
        f"[Stub] This is a simulated response from {agent_id or 'agent'}. "
        f"Input was: {user_prompt}"
    )


class StubGenerationProvider(GenerationProvider):
    """Returns the templated stub completion for every request."""

    def __init__(self, default_model: str = "gpt-4"):
        self._default_model = default_model

    @property
    def provider_id(self) -> str:
        return STUB_PROVIDER_ID

    def generate(self, request: GenerationRequest) -> GenerationResult:
        return GenerationResult(
            completion=stub_completion(request.agent_id, request.user_prompt),
            model=request.model or self._default_model,
            provider=STUB_PROVIDER_ID,
            usage={"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
            stubbed=True,
        )


class StubEmbeddingProvider(EmbeddingProvider):
    """Deterministic hash-derived vectors in [-1, 1].

    Equal payloads always embed to equal vectors, which is enough for
    tests and local runs that exercise memory writes.
    """

    def __init__(self, dimensions: int = 64):
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, payload: Any) -> List[float]:
        text = json.dumps(payload, sort_keys=True, default=str)
        vector: List[float] = []
        counter = 0
        while len(vector) < self._dimensions:
            digest = hashlib.sha256(f"{counter}:{text}".encode("utf-8")).digest()
            vector.extend((b / 127.5) - 1.0 for b in digest)
            counter += 1
        return vector[: self._dimensions]


class StubExternalCallProvider(ExternalCallProvider):
    """Echoes the call descriptor with a canned 200 response."""

    def call(self, descriptor: ApiCallDescriptor) -> Dict[str, Any]:
        logger.debug("Stub external call %s %s", descriptor.method, descriptor.url)
        return {
            "status": 200,
            "data": "[Stub] Simulated API response",
            "stubbed": True,
        }


PersonalityKey = Union[str, Tuple[str, str]]


class StaticPersonalityProvider(PersonalityProvider):
    """Personality lookup from an in-process mapping.

    Keys are either ``agent_id`` (any org) or ``(org_id, agent_id)``;
    org-specific entries win.
    """

    def __init__(self, personalities: Optional[Mapping[PersonalityKey, Personality]] = None):
        self._personalities: Dict[PersonalityKey, Personality] = dict(personalities or {})

    def assign(self, agent_id: str, personality: Personality, org_id: Optional[str] = None) -> None:
        key: PersonalityKey = (org_id, agent_id) if org_id else agent_id
        self._personalities[key] = personality

    def get_personality_for_agent(self, org_id: str, agent_id: str) -> Optional[Personality]:
        return self._personalities.get((org_id, agent_id)) or self._personalities.get(agent_id)
