"""Strip credentials from text and mappings before they reach the log."""

from __future__ import annotations

import re
from typing import Any

SENSITIVE_KEYS = {
    "token",
    "auth_token",
    "password",
    "credential",
    "authorization",
}

_KEY_VALUE_RE = re.compile(
    r"([\"']?(?:auth_token|token|password|credential)[\"']?\s*[:=]\s*[\"']?)([^\"'\s,}&]+)",
    flags=re.IGNORECASE,
)
_BEARER_RE = re.compile(r"(Bearer\s+)([^\s]+)", flags=re.IGNORECASE)


def redact_text(text: str) -> str:
    rendered = str(text)
    rendered = _BEARER_RE.sub(r"\1[REDACTED]", rendered)
    rendered = _KEY_VALUE_RE.sub(r"\1[REDACTED]", rendered)
    return rendered


def redact_mapping(obj: dict[str, Any]) -> dict[str, Any]:
    """Copy ``obj`` with the values of credential-like keys replaced."""

    redacted: dict[str, Any] = {}
    for key, value in obj.items():
        if str(key).lower() in SENSITIVE_KEYS:
            redacted[key] = "[REDACTED]"
        elif isinstance(value, dict):
            redacted[key] = redact_mapping(value)
        elif isinstance(value, list):
            redacted[key] = [redact_mapping(item) if isinstance(item, dict) else item for item in value]
        else:
            redacted[key] = value
    return redacted
