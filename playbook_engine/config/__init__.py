# playbook_engine/config package
# Runtime configuration (runtime.yaml + PLAYBOOK_ENGINE_* environment overrides).

from .runtime_config import EngineSettings, get_engine_settings, reset_config

__all__ = ["EngineSettings", "get_engine_settings", "reset_config"]
