"""Core module - configuration, logging, errors, and shared primitives."""

from core.config import load_config
from core.exceptions import ConfigurationError
from core.logger import get_loggers

__all__ = [
    "ConfigurationError",
    "get_loggers",
    "load_config",
]
