"""Coercion helpers for loosely typed input (CSV cells, form fields)."""

from typing import Any

TRUE_STRINGS = frozenset({"1", "true", "yes", "si", "sí", "on"})
FALSE_STRINGS = frozenset({"0", "false", "no", "off"})


def coerce_bool(value: Any, default: bool = False) -> bool:
    """Interpret ``value`` as a boolean.

    Booleans pass through, numbers are compared with zero and strings are
    matched case-insensitively against the usual spellings. ``None`` and
    unrecognised strings give ``default``.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in TRUE_STRINGS:
        return True
    if text in FALSE_STRINGS:
        return False
    return default
