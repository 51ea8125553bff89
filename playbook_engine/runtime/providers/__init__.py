# playbook_engine/runtime/providers package
# Capability interfaces (generation, embedding, personality, external call)
# plus stub, fallback and http implementations.

from .base import EmbeddingProvider, ExternalCallProvider, GenerationProvider, PersonalityProvider
from .fallback import (
    FallbackEmbeddingProvider,
    FallbackExternalCallProvider,
    FallbackGenerationProvider,
)
from .http import HttpExternalCallProvider
from .models import (
    ApiCallDescriptor,
    GenerationRequest,
    GenerationResult,
    Personality,
    api_call_descriptor_to_dict,
)
from .stubs import (
    StaticPersonalityProvider,
    StubEmbeddingProvider,
    StubExternalCallProvider,
    StubGenerationProvider,
    stub_completion,
)

__all__ = [
    "ApiCallDescriptor",
    "EmbeddingProvider",
    "ExternalCallProvider",
    "FallbackEmbeddingProvider",
    "FallbackExternalCallProvider",
    "FallbackGenerationProvider",
    "GenerationProvider",
    "GenerationRequest",
    "GenerationResult",
    "HttpExternalCallProvider",
    "Personality",
    "PersonalityProvider",
    "StaticPersonalityProvider",
    "StubEmbeddingProvider",
    "StubExternalCallProvider",
    "StubGenerationProvider",
    "api_call_descriptor_to_dict",
    "stub_completion",
]
