"""
fallback.py - Fallback adapters around external capabilities.

Each adapter wraps a primary provider and a deterministic fallback. When the
primary raises, the adapter logs a warning and answers from the fallback, so
an outage degrades output quality without breaking the run state machine.
Adapters are composed once, at configuration time (see runtime.factory);
step handlers never branch on provider health themselves.
"""

from __future__ import annotations

import logging
import numbers
from typing import Any, Dict, List, Optional

from .base import EmbeddingProvider, ExternalCallProvider, GenerationProvider
from .models import ApiCallDescriptor, GenerationRequest, GenerationResult
from .stubs import StubExternalCallProvider, StubGenerationProvider

logger = logging.getLogger(__name__)


class FallbackGenerationProvider(GenerationProvider):
    """Generation that never raises: provider failure yields the stub completion."""

    def __init__(
        self,
        primary: GenerationProvider,
        fallback: Optional[GenerationProvider] = None,
    ):
        self._primary = primary
        self._fallback = fallback or StubGenerationProvider()

    @property
    def provider_id(self) -> str:
        return self._primary.provider_id

    def generate(self, request: GenerationRequest) -> GenerationResult:
        try:
            return self._primary.generate(request)
        except Exception as e:
            logger.warning(
                "Generation provider '%s' failed for agent '%s': %s. Using stub response.",
                self._primary.provider_id,
                request.agent_id,
                e,
            )
            result = self._fallback.generate(request)
            return GenerationResult(
                completion=result.completion,
                model=result.model,
                provider=result.provider,
                usage=dict(result.usage),
                stubbed=True,
                error=str(e),
            )


class FallbackEmbeddingProvider(EmbeddingProvider):
    """Embedding that never raises: failure yields a zero vector.

    Vectors of the wrong length or with non-numeric entries are treated as
    failures too, so stored traces always have ``dimensions`` floats.
    """

    def __init__(self, primary: EmbeddingProvider, dimensions: Optional[int] = None):
        self._primary = primary
        self._dimensions = dimensions or primary.dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def zero_vector(self) -> List[float]:
        return [0.0] * self._dimensions

    def embed(self, payload: Any) -> List[float]:
        try:
            vector = self._primary.embed(payload)
        except Exception as e:
            logger.warning("Embedding provider failed: %s. Recording zero vector.", e)
            return self.zero_vector()

        if (
            not isinstance(vector, (list, tuple))
            or len(vector) != self._dimensions
            or not all(isinstance(v, numbers.Real) for v in vector)
        ):
            logger.warning(
                "Embedding provider returned malformed vector (expected %d floats). "
                "Recording zero vector.",
                self._dimensions,
            )
            return self.zero_vector()
        return [float(v) for v in vector]


class FallbackExternalCallProvider(ExternalCallProvider):
    """External call that never raises: failure yields the stub response."""

    def __init__(
        self,
        primary: ExternalCallProvider,
        fallback: Optional[ExternalCallProvider] = None,
    ):
        self._primary = primary
        self._fallback = fallback or StubExternalCallProvider()

    def call(self, descriptor: ApiCallDescriptor) -> Dict[str, Any]:
        try:
            return self._primary.call(descriptor)
        except Exception as e:
            logger.warning(
                "External call %s %s failed: %s. Using stub response.",
                descriptor.method,
                descriptor.url,
                e,
            )
            response = dict(self._fallback.call(descriptor))
            response["stubbed"] = True
            response["error"] = str(e)
            return response
