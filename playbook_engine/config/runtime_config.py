"""Runtime configuration for the playbook engine.

Provides centralized configuration for step limits, provider modes, memory
defaults and storage. Environment variables take precedence over YAML
config.

Usage:
    from playbook_engine.config.runtime_config import get_engine_settings

    settings = get_engine_settings()
    if settings.external_call_mode == "http":
        # Build the httpx-backed external call provider

Environment variable precedence (highest to lowest):
    1. PLAYBOOK_ENGINE_<SETTING> (e.g., PLAYBOOK_ENGINE_MAX_STEPS)
    2. runtime.yaml value
    3. Built-in default
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).parent / "runtime.yaml"
_cached_config: Optional[Dict[str, Any]] = None

ENV_PREFIX = "PLAYBOOK_ENGINE_"

# =============================================================================
# Guardrails
# =============================================================================

MAX_STEPS_MIN = 1
MAX_STEPS_MAX = 10_000

EMBEDDING_DIMENSIONS_MIN = 1
EMBEDDING_DIMENSIONS_MAX = 8192

VALID_GENERATION_MODES = ("stub",)
VALID_EMBEDDING_MODES = ("stub",)
VALID_EXTERNAL_CALL_MODES = ("stub", "http")
VALID_STORES = ("memory", "duckdb")


def _clamp(value: float, name: str, min_val: float, max_val: float) -> float:
    """Clamp a setting to sanity bounds with logging.

    Args:
        value: The configured value.
        name: Setting name for logging (e.g., "max_steps").
        min_val: Minimum allowed value.
        max_val: Maximum allowed value.

    Returns:
        Clamped value within [min_val, max_val].
    """
    if value < min_val:
        logger.warning(
            "Setting '%s' value %s is below minimum %s. Clamping to %s.",
            name,
            value,
            min_val,
            min_val,
        )
        return min_val
    if value > max_val:
        logger.warning(
            "Setting '%s' value %s exceeds maximum %s. Clamping to %s.",
            name,
            value,
            max_val,
            max_val,
        )
        return max_val
    return value


@dataclass(frozen=True)
class EngineSettings:
    """Resolved engine settings after env > yaml > default cascade."""

    max_steps: int = 100
    generation_mode: str = "stub"
    default_model: str = "gpt-4"
    default_temperature: float = 0.7
    embedding_mode: str = "stub"
    embedding_dimensions: int = 64
    external_call_mode: str = "stub"
    http_timeout_seconds: float = 10.0
    default_importance: float = 0.5
    default_memory_scope: str = "org"
    store: str = "memory"
    db_path: str = ".playbook_engine/engine.duckdb"
    events_path: Optional[str] = None


def _load_config() -> Dict[str, Any]:
    """Load runtime.yaml configuration, with caching."""
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    if _CONFIG_PATH.exists():
        with open(_CONFIG_PATH) as f:
            _cached_config = yaml.safe_load(f) or {}
    else:
        _cached_config = _default_config()

    return _cached_config


def _default_config() -> Dict[str, Any]:
    """Return default configuration if runtime.yaml doesn't exist."""
    return {
        "version": "1.0",
        "engine": {"max_steps": 100},
        "providers": {
            "generation": {"mode": "stub", "default_model": "gpt-4", "default_temperature": 0.7},
            "embedding": {"mode": "stub", "dimensions": 64},
            "external_call": {"mode": "stub", "timeout_seconds": 10},
        },
        "memory": {"default_importance": 0.5, "default_scope": "org"},
        "storage": {
            "store": "memory",
            "db_path": ".playbook_engine/engine.duckdb",
            "events_path": None,
        },
    }


def reset_config() -> None:
    """Reset cached config (for testing)."""
    global _cached_config
    _cached_config = None


def _yaml_value(path: str, default: Any) -> Any:
    """Read a dotted path (``providers.embedding.dimensions``) from the config."""
    node: Any = _load_config()
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return default if node is None else node


def _resolve(env_name: str, yaml_path: str, default: Any, cast: Callable[[Any], Any]) -> Any:
    """Resolve one setting: env var, then yaml, then default.

    Invalid env values are logged and ignored.
    """
    env_var = ENV_PREFIX + env_name
    raw = os.environ.get(env_var)
    if raw is not None and raw != "":
        try:
            return cast(raw)
        except (TypeError, ValueError):
            logger.warning("Invalid %s value '%s'. Ignoring.", env_var, raw)
    value = _yaml_value(yaml_path, default)
    try:
        return cast(value)
    except (TypeError, ValueError):
        logger.warning("Invalid config value '%s' for '%s'. Using %r.", value, yaml_path, default)
        return default


def _choice(name: str, value: str, valid: tuple, default: str) -> str:
    lowered = str(value).lower()
    if lowered not in valid:
        logger.warning(
            "Invalid %s '%s' (valid: %s). Falling back to '%s'.",
            name,
            value,
            ", ".join(valid),
            default,
        )
        return default
    return lowered


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text or None


def get_engine_settings() -> EngineSettings:
    """Resolve the full EngineSettings from environment and runtime.yaml.

    Returns:
        EngineSettings with every value validated and clamped.
    """
    max_steps = int(
        _clamp(
            _resolve("MAX_STEPS", "engine.max_steps", 100, int),
            "max_steps",
            MAX_STEPS_MIN,
            MAX_STEPS_MAX,
        )
    )
    dimensions = int(
        _clamp(
            _resolve("EMBEDDING_DIMENSIONS", "providers.embedding.dimensions", 64, int),
            "embedding_dimensions",
            EMBEDDING_DIMENSIONS_MIN,
            EMBEDDING_DIMENSIONS_MAX,
        )
    )
    importance = _clamp(
        _resolve("DEFAULT_IMPORTANCE", "memory.default_importance", 0.5, float),
        "default_importance",
        0.0,
        1.0,
    )
    temperature = _clamp(
        _resolve("DEFAULT_TEMPERATURE", "providers.generation.default_temperature", 0.7, float),
        "default_temperature",
        0.0,
        2.0,
    )
    timeout = _clamp(
        _resolve("HTTP_TIMEOUT_SECONDS", "providers.external_call.timeout_seconds", 10.0, float),
        "http_timeout_seconds",
        0.1,
        300.0,
    )

    return EngineSettings(
        max_steps=max_steps,
        generation_mode=_choice(
            "generation_mode",
            _resolve("GENERATION_MODE", "providers.generation.mode", "stub", str),
            VALID_GENERATION_MODES,
            "stub",
        ),
        default_model=_resolve("DEFAULT_MODEL", "providers.generation.default_model", "gpt-4", str),
        default_temperature=temperature,
        embedding_mode=_choice(
            "embedding_mode",
            _resolve("EMBEDDING_MODE", "providers.embedding.mode", "stub", str),
            VALID_EMBEDDING_MODES,
            "stub",
        ),
        embedding_dimensions=dimensions,
        external_call_mode=_choice(
            "external_call_mode",
            _resolve("EXTERNAL_CALL_MODE", "providers.external_call.mode", "stub", str),
            VALID_EXTERNAL_CALL_MODES,
            "stub",
        ),
        http_timeout_seconds=timeout,
        default_importance=importance,
        default_memory_scope=_resolve("DEFAULT_MEMORY_SCOPE", "memory.default_scope", "org", str),
        store=_choice(
            "store",
            _resolve("STORE", "storage.store", "memory", str),
            VALID_STORES,
            "memory",
        ),
        db_path=_resolve("DB_PATH", "storage.db_path", ".playbook_engine/engine.duckdb", str),
        events_path=_resolve("EVENTS_PATH", "storage.events_path", None, _optional_str),
    )
