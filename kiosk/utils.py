"""
Shared utility functions for parsing and identifier handling

Provides common helpers for:
- String parsing: Environment variable conversion (parse_float, strip_or_none)
- Identifier sanitization: Turning serials into MQTT/Home Assistant-safe ids
- Secret masking for log output
- Text cleanup: Stripping sysfs NUL terminators

These utilities are used by the configuration and probe layers.
"""

from __future__ import annotations

import re

_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")


def strip_non_alnum(value: str) -> str:
    """Drop every character outside [A-Za-z0-9]."""
    return _NON_ALNUM_RE.sub("", value)


def clean_sysfs_text(value: str) -> str:
    """Trim whitespace and the trailing NUL bytes device-tree files carry."""
    return value.replace("\0", "").strip()


def strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def parse_float(value: str | None, default: float) -> float:
    """Best-effort float parser with fallback."""
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def mask_secret(value: str | None) -> str:
    """Replace a secret with asterisks of the same length."""
    if value is None:
        return "null"
    return "*" * len(value)
