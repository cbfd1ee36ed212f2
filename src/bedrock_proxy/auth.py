"""Bearer-token credential gate."""

from __future__ import annotations

import hmac
import logging
from collections.abc import Mapping

from bedrock_proxy.config import AuthConfig
from bedrock_proxy.errors import AuthenticationError

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def get_header(headers: Mapping[str, str], name: str) -> str | None:
    """Look up a header by case-insensitive name.

    aiohttp hands us a ``CIMultiDictProxy``; Lambda events carry a plain dict
    whose keys may have any casing.
    """
    value = headers.get(name)
    if value is not None:
        return value
    wanted = name.lower()
    for key, candidate in headers.items():
        if key.lower() == wanted:
            return candidate
    return None


def authenticate(headers: Mapping[str, str], auth: AuthConfig) -> None:
    """Check the request's bearer token against the configured secret.

    Raises:
        AuthenticationError: Always with the same message; the reason is only logged.
    """
    expected = auth.expected_token
    if not expected:
        logger.error("BEARER_TOKEN is not configured; rejecting request")
        raise AuthenticationError()

    header = get_header(headers, "Authorization")
    if not header or not header.startswith(BEARER_PREFIX):
        logger.warning("Authorization header missing or not a bearer token")
        raise AuthenticationError()

    token = header[len(BEARER_PREFIX) :]
    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Bearer token mismatch")
        raise AuthenticationError()


def is_authorized(headers: Mapping[str, str], auth: AuthConfig) -> bool:
    """Non-raising form of ``authenticate``."""
    try:
        authenticate(headers, auth)
    except AuthenticationError:
        return False
    return True
