"""Configuration management for the catalog access layer."""

from __future__ import annotations

import logging
import os
import pathlib
from typing import Any, TypeVar, cast, overload

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from core.exceptions import ConfigurationError
from core.models.config_models import AppConfig

# Type definitions for configuration
ConfigValue = dict[str, Any] | list[Any] | str | int | float | bool | None

T = TypeVar("T")

DEFAULT_CONFIG_PATH = "config.yaml"
MAX_CONFIG_SIZE_BYTES = 1024 * 1024

logger = logging.getLogger("config")
# Handlers are attached later by the main logger setup
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


def resolve_env_vars(config: ConfigValue) -> ConfigValue:
    """Recursively resolve environment variables in config values.

    Args:
        config: Configuration value (dict, list, or primitive).

    Returns:
        ConfigValue: Config with environment variables resolved.

    """
    if isinstance(config, dict):
        return {str(k): resolve_env_vars(v) for k, v in config.items()}
    if isinstance(config, list):
        return [resolve_env_vars(item) for item in config]
    if isinstance(config, str):
        # Pure ${VAR} resolves to an empty string when the variable is unset
        if config.startswith("${") and config.endswith("}"):
            return os.getenv(config[2:-1], "")
        if "~" in config or "$" in config:
            result = os.path.expandvars(config) if "$" in config else config
            if result.startswith("~"):
                result = str(pathlib.Path(result).expanduser())
            return result
    return config


def _validate_config_path(path: str) -> pathlib.Path:
    """Resolve the configuration path and check that it is a readable YAML file.

    Raises:
        ConfigurationError: If the path is missing, unreadable or not YAML

    """
    resolved_path = pathlib.Path(path).expanduser().resolve()
    if not resolved_path.is_file():
        msg = f"Config file not found at the specified path: {path}"
        raise ConfigurationError(msg, path)
    if resolved_path.suffix.lower() not in (".yaml", ".yml"):
        msg = "Configuration file must have a .yaml or .yml extension"
        raise ConfigurationError(msg, path)
    if not os.access(resolved_path, os.R_OK):
        msg = f"No read permission for config file: {resolved_path}"
        raise ConfigurationError(msg, path)
    if resolved_path.stat().st_size > MAX_CONFIG_SIZE_BYTES:
        msg = f"Config file {resolved_path} is too large (max {MAX_CONFIG_SIZE_BYTES} bytes)"
        raise ConfigurationError(msg, path)
    return resolved_path


def format_pydantic_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors into a readable string."""
    error_messages: list[str] = []
    for err in error.errors():
        loc_path = ".".join(str(loc) for loc in err["loc"])
        if err["type"] == "missing":
            error_messages.append(f"{loc_path}: Missing required field")
        else:
            error_messages.append(f"{loc_path}: {err['msg']}")
    return "\n".join(error_messages)


def load_config(config_path: str | None = None) -> AppConfig:
    """Load the configuration from a YAML file, resolve environment variables, and validate it.

    Args:
        config_path: Path to the configuration YAML file. Defaults to
            ``$CONFIG_PATH`` or ``config.yaml``.

    Returns:
        Validated AppConfig Pydantic model with resolved env vars.

    Raises:
        ConfigurationError: If the file is missing, malformed or fails validation.

    """
    env_loaded = load_dotenv()
    logger.debug(".env file %s", "found and loaded" if env_loaded else "not found, using system environment variables")

    path = config_path or os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH)
    validated_path = _validate_config_path(path)
    logger.info("Loading config from: %s", validated_path)

    try:
        config_data = yaml.safe_load(validated_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        msg = f"Failed to parse YAML config: {e}"
        raise ConfigurationError(msg, path) from e

    if config_data is None:
        config_data = {}
    config_data = resolve_env_vars(config_data)
    if not isinstance(config_data, dict):
        msg = "Configuration data is not a dictionary after parsing."
        raise ConfigurationError(msg, path)

    try:
        config_model = AppConfig.model_validate(config_data)
    except ValidationError as e:
        msg = f"Configuration validation failed:\n{format_pydantic_errors(e)}"
        raise ConfigurationError(msg, path) from e

    logger.info("Configuration successfully loaded and validated.")
    return config_model


# noinspection PyMissingOrEmptyDocstring
class Config:
    """Dot-notation view over a validated configuration."""

    def __init__(self, app_config: AppConfig) -> None:
        self.model = app_config
        self._config: dict[str, Any] = app_config.model_dump(mode="json")

    @classmethod
    def from_file(cls, config_path: str | None = None) -> Config:
        return cls(load_config(config_path))

    @overload
    def get(self, key: str, default: None = None) -> Any: ...

    @overload
    def get(self, key: str, default: T) -> Any | T: ...

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key (supports dot notation)
            default: Default value if key not found

        Returns:
            Configuration value or default

        """
        current: Any = self._config
        for k in key.split("."):
            if isinstance(current, dict) and k in current:
                current = cast(Any, current[k])
            else:
                return default
        return current

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key, default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "yes", "1", "on")
        return bool(value)

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get(key, default)
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            return default
