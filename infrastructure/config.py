"""
FORKY CONFIG - Engine Configuration

Configuration is loaded once from `config/forky.toml` (the `[engine]`
table), overlaid with environment overrides, validated into a typed
EngineConfig and shared process-wide.

Precedence (highest first):
    1. FORKY_* environment variables
    2. [engine] table of the TOML file
    3. EngineConfig defaults

Provider credentials never live in the TOML file; they are read from the
environment at the moment a model is resolved (see core.llm).

Usage:
    from infrastructure.config import get_config

    config = get_config()
    print(config.default_model, config.max_tokens)
"""
import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional

import msgspec

from core.errors import ValidationError
from core.ontology import ScopeDirection


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "forky.toml"

# Environment variable -> EngineConfig field
ENV_OVERRIDES: Dict[str, str] = {
    "FORKY_DEFAULT_MODEL": "default_model",
    "FORKY_TEMPERATURE": "temperature",
    "FORKY_MAX_TOKENS": "max_tokens",
}

# Provider name -> credential environment variable
PROVIDER_KEY_ENV: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "glm": "GLM_API_KEY",
}


class EngineConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Typed engine settings."""
    default_model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 2000
    summary_temperature: float = 0.3
    summary_max_tokens: int = 80
    history_limit: int = 50
    history_coalesce_ms: int = 750
    scope_direction: ScopeDirection = ScopeDirection.BOTH
    scope_max_depth: int = 3
    artifact_preview_chars: int = 600
    untitled_project_name: str = "Untitled project"

    def __post_init__(self):
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        if self.history_limit <= 0:
            raise ValueError("history_limit must be positive")
        if self.scope_max_depth < 0:
            raise ValueError("scope_max_depth must not be negative")


def load_toml_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load the raw `[engine]` table from a TOML file.

    A missing file yields an empty table with a warning; a malformed file
    raises ValidationError.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return {}
    except tomllib.TOMLDecodeError as e:
        raise ValidationError(f"Invalid TOML in {config_path}: {e}") from e
    return dict(data.get("engine", {}))


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_name, field_name in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is not None and value != "":
            overrides[field_name] = value
    return overrides


def load_config(path: Optional[Path] = None) -> EngineConfig:
    """
    Build an EngineConfig from TOML plus environment overrides.

    Raises:
        ValidationError: if a value has the wrong type or is out of range
    """
    raw = load_toml_config(path)
    raw.update(_env_overrides())
    try:
        # strict=False lets "0.5" from the environment decode as a float
        return msgspec.convert(raw, EngineConfig, strict=False)
    except (msgspec.ValidationError, ValueError) as e:
        raise ValidationError(f"Invalid engine configuration: {e}") from e


def provider_api_key(provider: str) -> Optional[str]:
    """Credential for a provider, or None when unconfigured."""
    env_name = PROVIDER_KEY_ENV.get(provider)
    if env_name is None:
        return None
    return os.getenv(env_name) or None


# =============================================================================
# SINGLETON INSTANCE
# =============================================================================

_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: EngineConfig) -> None:
    """Replace the process-wide config (for testing or the CLI)."""
    global _config
    _config = config


def reset_config() -> None:
    """Drop the process-wide config so the next get_config() reloads it."""
    global _config
    _config = None
