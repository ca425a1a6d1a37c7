"""
ChangeGuard configuration.

- Pydantic-based settings (environment variables, .env files)
- Guardrails configuration tree with YAML round-tripping
- Per-project and user-level config files
"""

from changeguard.config.guardrails import GuardrailsConfig
from changeguard.config.loader import get_config_path, load_config, save_config
from changeguard.config.settings import Settings, get_settings

__all__ = [
    "GuardrailsConfig",
    "Settings",
    "get_config_path",
    "get_settings",
    "load_config",
    "save_config",
]
