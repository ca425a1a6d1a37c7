"""
Configuration file loading.

Search order:
1. Explicit path (--config flag)
2. .changeguard/config.yaml (project root)
3. ~/.changeguard/config.yaml (user home)
4. Default configuration
"""

from __future__ import annotations

from pathlib import Path

import structlog
import yaml

from changeguard.config.guardrails import GuardrailsConfig
from changeguard.config.settings import Settings
from changeguard.core.errors import ConfigurationError

logger = structlog.get_logger()

CONFIG_DIR = ".changeguard"
CONFIG_FILE = "config.yaml"


def get_config_path(explicit_path: str | Path | None = None) -> Path | None:
    """
    Find the configuration file to use.

    Returns:
        Path to config file or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        return path if path.exists() else None

    cwd_config = Path.cwd() / CONFIG_DIR / CONFIG_FILE
    if cwd_config.exists():
        return cwd_config

    home_config = Path.home() / CONFIG_DIR / CONFIG_FILE
    if home_config.exists():
        return home_config

    return None


def load_config(
    path: str | Path | None = None,
    settings: Settings | None = None,
) -> GuardrailsConfig:
    """
    Load the engine configuration.

    An explicitly requested file must exist and parse; discovered files that
    fail to parse are skipped with a warning.

    Args:
        path: Optional explicit config file path
        settings: Fallback for scalar keys the file leaves out

    Raises:
        ConfigurationError: If an explicit path is missing or malformed
    """
    if path is not None and not Path(path).exists():
        raise ConfigurationError(
            f"Config file not found: {path}",
            details={"path": str(path)},
        )

    config_path = get_config_path(path)
    if config_path is None:
        return GuardrailsConfig.default(settings)

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError("top-level document must be a mapping")
        config = GuardrailsConfig.from_dict(data, settings=settings)
    except (yaml.YAMLError, ValueError, KeyError, TypeError) as e:
        if path is not None:
            raise ConfigurationError(
                f"Invalid config file {config_path}: {e}",
                details={"path": str(config_path)},
            ) from e
        logger.warning("failed_to_load_config", path=str(config_path), error=str(e))
        return GuardrailsConfig.default(settings)

    logger.debug("loaded_config", path=str(config_path))
    return config


def save_config(config: GuardrailsConfig, path: str | Path | None = None) -> Path:
    """Write the configuration as YAML and return the file written."""
    target_path = Path(path) if path else Path.cwd() / CONFIG_DIR / CONFIG_FILE
    target_path.parent.mkdir(parents=True, exist_ok=True)

    with open(target_path, "w") as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)

    logger.info("saved_config", path=str(target_path))
    return target_path
