"""Configuration for the gateway.

Configuration is read once at process start and passed down explicitly.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class ConfigError(ValueError):
    """Raised when an environment value cannot be used."""


@dataclass(frozen=True)
class AuthConfig:
    """Shared secret expected in ``Authorization: Bearer <token>``."""

    expected_token: str | None = None


@dataclass
class GatewayConfig:
    """Configuration for the gateway server and its backend client."""

    host: str = "127.0.0.1"
    port: int = 3000

    # Single shared secret; None means every request is rejected
    bearer_token: str | None = None

    # Backend configuration
    aws_region: str = "us-east-1"
    connect_timeout: float = 10.0
    read_timeout: float = 600.0
    max_retries: int = 2  # retries performed by the Anthropic SDK itself

    # Streaming: append "data: [DONE]" after the last event
    emit_done_sentinel: bool = False

    log_level: str = "info"

    # Request limits
    max_body_size: int = 20 * 1024 * 1024  # 20MB

    @property
    def auth(self) -> AuthConfig:
        return AuthConfig(expected_token=self.bearer_token or None)

    @property
    def logging_level(self) -> int:
        return parse_log_level(self.log_level)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GatewayConfig:
        """Build a config from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``).

        Raises:
            ConfigError: If a numeric or level value is malformed.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        config = cls(
            host=env.get("HOST") or defaults.host,
            port=_int(env, "PORT", defaults.port),
            bearer_token=env.get("BEARER_TOKEN") or None,
            aws_region=env.get("AWS_REGION") or defaults.aws_region,
            connect_timeout=_float(env, "BACKEND_CONNECT_TIMEOUT", defaults.connect_timeout),
            read_timeout=_float(env, "BACKEND_READ_TIMEOUT", defaults.read_timeout),
            max_retries=_int(env, "BACKEND_MAX_RETRIES", defaults.max_retries),
            emit_done_sentinel=(env.get("EMIT_DONE_SENTINEL") or "").strip().lower()
            in _TRUE_VALUES,
            log_level=(env.get("LOG_LEVEL") or defaults.log_level).strip().lower(),
            max_body_size=_int(env, "MAX_BODY_SIZE", defaults.max_body_size),
        )
        # Fail early on an unknown level
        parse_log_level(config.log_level)
        return config


def parse_log_level(level: str) -> int:
    """Translate a LOG_LEVEL name into a ``logging`` level."""
    try:
        return LOG_LEVELS[level.strip().lower()]
    except KeyError:
        raise ConfigError(
            f"Unknown log level {level!r}; expected one of {', '.join(LOG_LEVELS)}"
        ) from None


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
