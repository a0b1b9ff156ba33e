"""
Environment variable utilities for reliable configuration handling.

This module provides consistent environment variable parsing across the application.
"""
import os

from csos.utils.error_handling import ConfigurationError

_TRUE = {"1", "true", "t", "yes", "y", "on"}

def env_bool(name: str, default: bool = False) -> bool:
    """Parse environment variable as boolean with sensible defaults."""
    v = os.getenv(name)
    return default if v is None else str(v).strip().lower() in _TRUE

def env_str(name: str, default: str = "") -> str:
    """Get environment variable as string with default."""
    v = os.getenv(name)
    return v if v is not None else default

def env_int(name: str, default: int) -> int:
    """Parse environment variable as integer, raising on garbage."""
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return int(v)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {v!r}")

def require_env(name: str) -> str:
    """
    Get a mandatory environment variable.

    Raises:
        ConfigurationError: If the variable is unset or blank
    """
    v = os.getenv(name)
    if v is None or not v.strip():
        raise ConfigurationError(f"Missing required environment variable: {name}")
    return v.strip()
