"""
memory.py - Memory capture after successful steps.

MemoryRecorder writes:
- an EpisodicTrace for every successful step (input + output + embedding);
- a SemanticMemory when the output flags ``memoryWorthy: true`` or the step
  config sets ``captureMemory``.

Capture is best-effort. Embeddings go through FallbackEmbeddingProvider (a
zero vector on failure), and repository failures are logged, never raised:
memory capture must not fail a run.
"""

from __future__ import annotations

import logging
import numbers
from typing import Any, Mapping, Optional

from ..providers import EmbeddingProvider, FallbackEmbeddingProvider
from ..storage import MemoryRepository
from ..types import EpisodicTrace, PlaybookStep, SemanticMemory

logger = logging.getLogger(__name__)


def clamp_importance(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class MemoryRecorder:
    """Episodic and semantic memory capture for one engine instance."""

    def __init__(
        self,
        repository: MemoryRepository,
        embeddings: EmbeddingProvider,
        default_importance: float = 0.5,
        default_scope: str = "org",
    ):
        if not isinstance(embeddings, FallbackEmbeddingProvider):
            embeddings = FallbackEmbeddingProvider(embeddings)
        self._repository = repository
        self._embeddings = embeddings
        self._default_importance = clamp_importance(default_importance)
        self._default_scope = default_scope

    def record_step(
        self,
        *,
        org_id: str,
        run_id: str,
        step: PlaybookStep,
        step_input: Any,
        output: Any,
    ) -> None:
        """Record memory for one successful step. Never raises."""
        content = {"input": step_input, "output": output}
        trace = EpisodicTrace(
            run_id=run_id,
            org_id=org_id,
            step_key=step.key,
            content=content,
            embedding=self._embeddings.embed(content),
        )
        try:
            self._repository.save_episodic_trace(trace)
        except Exception as e:
            logger.warning(
                "Failed to save episodic trace for run %s step '%s': %s", run_id, step.key, e
            )

        if self._is_memory_worthy(step, output):
            self._record_semantic(org_id=org_id, run_id=run_id, step=step, output=output)

    def _is_memory_worthy(self, step: PlaybookStep, output: Any) -> bool:
        if isinstance(output, Mapping) and output.get("memoryWorthy") is True:
            return True
        return step.config.memory.capture

    def resolve_importance(self, step: PlaybookStep, output: Any) -> float:
        """Importance from the output, else the step config, else the default."""
        if isinstance(output, Mapping):
            value = output.get("importance")
            if isinstance(value, numbers.Real) and not isinstance(value, bool):
                return clamp_importance(value)
        configured: Optional[float] = step.config.memory.importance
        if configured is not None:
            return clamp_importance(configured)
        return self._default_importance

    def _record_semantic(
        self, *, org_id: str, run_id: str, step: PlaybookStep, output: Any
    ) -> None:
        capture = step.config.memory
        content = {"stepKey": step.key, "output": output}
        memory = SemanticMemory(
            org_id=org_id,
            run_id=run_id,
            step_key=step.key,
            content=content,
            embedding=self._embeddings.embed(content),
            importance=self.resolve_importance(step, output),
            scope=capture.scope or self._default_scope,
            ttl_seconds=capture.ttl_seconds,
        )
        try:
            self._repository.save_semantic_memory(memory)
        except Exception as e:
            logger.warning(
                "Failed to save semantic memory for run %s step '%s': %s", run_id, step.key, e
            )
        else:
            logger.debug(
                "Semantic memory saved for run %s step '%s' (importance=%.2f)",
                run_id,
                step.key,
                memory.importance,
            )
