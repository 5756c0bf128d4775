"""Server configuration read from JASPER_* environment variables."""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from .core.errors import create_configuration_error

AUTH_TYPES = ("basic", "login", "argument")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off")

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_FILE_SIZE = 100 * 1024 * 1024
DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_HISTORY = 100


class JasperConfig(BaseModel):
    """Connection and runtime settings for one JasperReports Server."""

    url: str
    username: str
    password: str = Field(repr=False)
    organization: Optional[str] = None
    auth_type: str = "basic"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    ssl_verify: bool = True
    log_level: str = "INFO"
    debug_mode: bool = False
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_history: int = DEFAULT_MAX_HISTORY

    @property
    def qualified_username(self) -> str:
        """Username with the tenant appended, e.g. ``jasperadmin|organization_1``."""
        if self.organization and "|" not in self.username:
            return f"{self.username}|{self.organization}"
        return self.username

    @property
    def effective_log_level(self) -> int:
        return logging.DEBUG if self.debug_mode else getattr(logging, self.log_level)


def _required(env: Mapping[str, str], key: str, example: str) -> str:
    value = env.get(key, "").strip()
    if not value:
        raise create_configuration_error(key, f"{key} is required (e.g. {key}={example})", {"expected_type": "string"})
    return value


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise create_configuration_error(
        key, f"{key} must be true, false, 1, or 0", {"config_value": raw, "expected_type": "boolean", "valid_values": ["true", "false", "1", "0"]}
    )


def _positive_number(env: Mapping[str, str], key: str, default: float, allow_zero: bool = False) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        value = -1.0
    if value < 0 or (value == 0 and not allow_zero):
        raise create_configuration_error(
            key, f"{key} must be a {'non-negative' if allow_zero else 'positive'} number", {"config_value": raw, "expected_type": "number"}
        )
    return value


def load_config(env: Optional[Mapping[str, str]] = None) -> JasperConfig:
    """Build a JasperConfig from the environment.

    Raises a configuration NormalizedError naming the first invalid variable.
    """
    env = os.environ if env is None else env

    url = _required(env, "JASPER_URL", "http://localhost:8080/jasperserver").rstrip("/")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise create_configuration_error(
            "JASPER_URL", "JASPER_URL must be a valid http or https URL", {"config_value": url, "expected_type": "url"}
        )

    username = _required(env, "JASPER_USERNAME", "jasperadmin")
    password = _required(env, "JASPER_PASSWORD", "jasperadmin")

    organization = env.get("JASPER_ORGANIZATION")
    if organization is not None:
        organization = organization.strip() or None

    auth_type = env.get("JASPER_AUTH_TYPE", "basic").strip().lower() or "basic"
    if auth_type not in AUTH_TYPES:
        raise create_configuration_error(
            "JASPER_AUTH_TYPE",
            f"JASPER_AUTH_TYPE must be one of: {', '.join(AUTH_TYPES)}",
            {"config_value": auth_type, "valid_values": list(AUTH_TYPES)},
        )

    log_level = env.get("JASPER_LOG_LEVEL", "INFO").strip().upper() or "INFO"
    if log_level not in LOG_LEVELS:
        raise create_configuration_error(
            "JASPER_LOG_LEVEL",
            f"JASPER_LOG_LEVEL must be one of: {', '.join(LOG_LEVELS)}",
            {"config_value": log_level, "valid_values": list(LOG_LEVELS)},
        )

    return JasperConfig(
        url=url,
        username=username,
        password=password,
        organization=organization,
        auth_type=auth_type,
        timeout_seconds=_positive_number(env, "JASPER_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
        ssl_verify=_bool(env, "JASPER_SSL_VERIFY", True),
        log_level=log_level,
        debug_mode=_bool(env, "JASPER_DEBUG_MODE", False),
        max_file_size=int(_positive_number(env, "JASPER_MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE)),
        poll_interval_seconds=_positive_number(env, "JASPER_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS, allow_zero=True),
        max_history=int(_positive_number(env, "JASPER_MAX_HISTORY", DEFAULT_MAX_HISTORY)),
    )
