"""
Service Configuration

Loads settings from the environment once and validates required fields.
The backend URL and service credential are mandatory; everything else has
a default.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Optional

from csos.utils.constants import (
    DEFAULT_LOCAL_RULES_DIR,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RULE_CACHE_TTL_SECONDS,
    DEFAULT_RULES_BUCKET,
)
from csos.utils.env import env_int, env_str, require_env
from csos.utils.error_handling import ConfigurationError

logger = logging.getLogger(__name__)

BACKEND_URL_ENV = "CSOS_BACKEND_URL"
SERVICE_ROLE_KEY_ENV = "CSOS_SERVICE_ROLE_KEY"

_STORAGE_MODES = ("backend", "gcs")


@dataclass(frozen=True)
class Settings:
    backend_url: str
    service_role_key: str
    anon_key: str
    rules_bucket: str = DEFAULT_RULES_BUCKET
    local_rules_dir: str = DEFAULT_LOCAL_RULES_DIR
    rule_cache_ttl_seconds: int = DEFAULT_RULE_CACHE_TTL_SECONDS
    rules_storage: str = "backend"
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS
    log_level: str = "INFO"
    gcs_project: Optional[str] = None


def load_settings() -> Settings:
    """
    Build Settings from environment variables.

    Raises:
        ConfigurationError: If CSOS_BACKEND_URL or CSOS_SERVICE_ROLE_KEY is
            missing, or an optional value is malformed
    """
    backend_url = require_env(BACKEND_URL_ENV).rstrip("/")
    service_role_key = require_env(SERVICE_ROLE_KEY_ENV)

    rules_storage = env_str("CSOS_RULES_STORAGE", "backend").strip().lower()
    if rules_storage not in _STORAGE_MODES:
        raise ConfigurationError(
            f"CSOS_RULES_STORAGE must be one of {', '.join(_STORAGE_MODES)}, got {rules_storage!r}"
        )

    ttl = env_int("CSOS_RULE_CACHE_TTL_SECONDS", DEFAULT_RULE_CACHE_TTL_SECONDS)
    if ttl < 0:
        raise ConfigurationError("CSOS_RULE_CACHE_TTL_SECONDS must not be negative")

    settings = Settings(
        backend_url=backend_url,
        service_role_key=service_role_key,
        anon_key=env_str("CSOS_ANON_KEY") or service_role_key,
        rules_bucket=env_str("CSOS_RULES_BUCKET", DEFAULT_RULES_BUCKET),
        local_rules_dir=env_str("CSOS_LOCAL_RULES_DIR", DEFAULT_LOCAL_RULES_DIR),
        rule_cache_ttl_seconds=ttl,
        rules_storage=rules_storage,
        request_timeout_seconds=env_int("CSOS_REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS),
        log_level=env_str("LOG_LEVEL", "INFO").upper(),
        gcs_project=env_str("GOOGLE_CLOUD_PROJECT") or None,
    )
    logger.info(
        f"Loaded settings: backend={settings.backend_url} rules_storage={settings.rules_storage} "
        f"bucket={settings.rules_bucket} ttl={settings.rule_cache_ttl_seconds}s"
    )
    return settings


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get process-wide settings (cached). Tests call get_settings.cache_clear()."""
    return load_settings()
