"""
base.py - Abstract capability interfaces consumed by the engine.

Capabilities are the engine's only suspension points: generation,
embedding, persona lookup and external calls. Each is an ABC so the run
controller can be assembled with real, stub or fallback-wrapped
implementations at configuration time.

Capabilities do NOT own:
- Step traversal (that's the run controller's job)
- Persistence (that's the repositories' job)
- Fallback policy (that's the Fallback* adapters' job)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .models import ApiCallDescriptor, GenerationRequest, GenerationResult, Personality


class GenerationProvider(ABC):
    """LLM text generation."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Identifier reported in step output (e.g. 'stub', 'openai')."""
        ...

    @abstractmethod
    def generate(self, request: GenerationRequest) -> GenerationResult:
        """Produce a completion. May raise; callers wrap with a fallback."""
        ...


class EmbeddingProvider(ABC):
    """Vector embedding of arbitrary JSON payloads."""

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Length of every vector this provider returns."""
        ...

    @abstractmethod
    def embed(self, payload: Any) -> List[float]:
        """Embed ``payload``. May raise; callers wrap with a fallback."""
        ...


class PersonalityProvider(ABC):
    """Persona lookup for agents."""

    @abstractmethod
    def get_personality_for_agent(self, org_id: str, agent_id: str) -> Optional[Personality]:
        """Return the personality assigned to ``agent_id`` or None."""
        ...


class ExternalCallProvider(ABC):
    """Outbound call issued by API steps."""

    @abstractmethod
    def call(self, descriptor: ApiCallDescriptor) -> Dict[str, Any]:
        """Perform the call and return ``{status, data, stubbed, ...}``."""
        ...
