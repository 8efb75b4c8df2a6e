"""Helpers for safe debug logging.

icewatch sends the backend API key with every REST request and every
realtime join.  This module provides a small utility to redact sensitive
fields before emitting DEBUG logs.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "apikey",
        "api_key",
        "authorization",
        "access_token",
        "refresh_token",
        "token",
        "password",
        "cookie",
    }
)

_MAX_DEPTH = 20
_REDACTED = "<redacted>"


def _is_sensitive(key: object) -> bool:
    return str(key).lower() in _SENSITIVE_VALUE_KEYS


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs.

    Mappings keep their keys but sensitive values (API keys, bearer headers,
    realtime access tokens) become ``"<redacted>"``.  Long strings such as
    change-event rows are truncated to *max_string* characters.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    def _child(item: Any) -> Any:
        return redact_for_log(item, max_string=max_string, _depth=_depth + 1)

    if isinstance(value, Mapping):
        return {str(key): _REDACTED if _is_sensitive(key) else _child(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_child(item) for item in value]
    return repr(value)


def redact_url(url: str) -> str:
    """Mask the ``apikey`` query parameter of a realtime socket URL."""
    head, sep, query = url.partition("?")
    if not sep:
        return url
    parts = []
    for item in query.split("&"):
        key, eq, _value = item.partition("=")
        parts.append(f"{key}={_REDACTED}" if eq and _is_sensitive(key) else item)
    return f"{head}?{'&'.join(parts)}"
