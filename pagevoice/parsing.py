"""Shared parsing helpers for config, request, and record value normalization."""

from __future__ import annotations

_TRUE_BOOLEAN_TOKENS = frozenset({"1", "true", "yes", "on"})
_FALSE_BOOLEAN_TOKENS = frozenset({"0", "false", "no", "off"})

MIN_PAGE_LIMIT = 1
MAX_PAGE_LIMIT = 50
DEFAULT_PAGE_LIMIT = 10


def normalize_optional_string(value: object) -> str | None:
    """Normalize an optional value to a stripped non-empty string.

    Args:
        value: Arbitrary input value.

    Returns:
        Stripped string value, or `None` when the value is empty after trimming.
    """

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text


def parse_permissive_boolean(value: object) -> bool | None:
    """Parse a permissive boolean token and return `None` for invalid values."""

    if isinstance(value, bool):
        return value

    normalized = normalize_optional_string(value)
    if normalized is None:
        return None

    token = normalized.lower()
    if token in _TRUE_BOOLEAN_TOKENS:
        return True
    if token in _FALSE_BOOLEAN_TOKENS:
        return False
    return None


def parse_positive_number(value: object, field_name: str) -> float:
    """Parse a strictly positive number from a numeric or textual value.

    Raises:
        ValueError: If the value is missing, non-numeric, boolean, or not positive.
    """

    if isinstance(value, bool):
        raise ValueError(f"`{field_name}` must be a positive number.")
    if isinstance(value, int | float):
        parsed = float(value)
    else:
        normalized = normalize_optional_string(value)
        if normalized is None:
            raise ValueError(f"`{field_name}` must be a positive number.")
        try:
            parsed = float(normalized)
        except ValueError as exc:
            raise ValueError(f"`{field_name}` must be a positive number.") from exc
    if parsed <= 0:
        raise ValueError(f"`{field_name}` must be a positive number.")
    return parsed


def clamp_page_limit(value: object) -> int:
    """Clamp a requested pagination limit to the supported range.

    Unparseable values fall back to the default limit.
    """

    if isinstance(value, bool):
        return DEFAULT_PAGE_LIMIT
    try:
        parsed = int(str(value).strip()) if not isinstance(value, int) else value
    except ValueError:
        return DEFAULT_PAGE_LIMIT
    return min(max(parsed, MIN_PAGE_LIMIT), MAX_PAGE_LIMIT)
