"""Model registry and TOML configuration loader.

Loads model definitions from models.toml and session controller
defaults from defaults.toml.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from stream_session.schemas.config import ControllerConfig, ModelConfig, RetryPolicy

# Default config directory relative to the stream_session package
_CONFIG_DIR = Path(__file__).parent.parent / "config"

_RETRY_KEYS = ("max_attempts", "backoff_base_delay", "backoff_max_delay")


def load_models(config_path: Path | None = None) -> dict[str, ModelConfig]:
    """Load the model registry from a TOML file.

    Args:
        config_path: Path to models.toml. Defaults to stream_session/config/models.toml.

    Returns:
        Dictionary mapping model keys to ModelConfig instances.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the TOML structure is invalid.
    """
    path = config_path or _CONFIG_DIR / "models.toml"
    if not path.exists():
        raise FileNotFoundError(f"Model registry not found: {path}")

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    models_section = raw.get("models")
    if not models_section or not isinstance(models_section, dict):
        raise ValueError(f"No [models] section found in {path}")

    registry: dict[str, ModelConfig] = {}
    for key, entry in models_section.items():
        if not isinstance(entry, dict):
            continue
        registry[key] = ModelConfig(**entry)

    return registry


def load_controller_config(config_path: Path | None = None) -> ControllerConfig:
    """Load session controller defaults from a TOML file.

    Reads the ``[session]`` table. Missing keys fall back to the
    ControllerConfig / RetryPolicy defaults.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If a value fails validation.
    """
    path = config_path or _CONFIG_DIR / "defaults.toml"
    if not path.exists():
        raise FileNotFoundError(f"Session config not found: {path}")

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    section = raw.get("session", {})
    if not isinstance(section, dict):
        raise ValueError(f"[session] in {path} must be a table")

    retry = RetryPolicy(**{k: section[k] for k in _RETRY_KEYS if k in section})
    extra = {k: v for k, v in section.items() if k not in _RETRY_KEYS}
    return ControllerConfig(retry=retry, **extra)
