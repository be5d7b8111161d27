"""Unit tests for shared value parsing helpers."""

from __future__ import annotations

import pytest

from pagevoice.parsing import (
    clamp_page_limit,
    normalize_optional_string,
    parse_permissive_boolean,
    parse_positive_number,
)


def test_normalize_optional_string() -> None:
    """Blank values normalize to `None`; others are stripped."""

    assert normalize_optional_string(None) is None
    assert normalize_optional_string("   ") is None
    assert normalize_optional_string("  voice-1 ") == "voice-1"
    assert normalize_optional_string(5) == "5"


@pytest.mark.parametrize(
    ("value", "expected"),
    [(True, True), ("yes", True), (" On ", True), ("0", False), ("off", False), ("maybe", None), ("", None)],
)
def test_parse_permissive_boolean(value: object, expected: bool | None) -> None:
    """Boolean tokens are parsed case-insensitively."""

    assert parse_permissive_boolean(value) is expected


def test_parse_positive_number_accepts_numbers_and_text() -> None:
    """Positive numbers parse from numeric or textual input."""

    assert parse_positive_number(2, "timeout") == 2.0
    assert parse_positive_number(" 2.5 ", "timeout") == 2.5


@pytest.mark.parametrize("value", [0, -1, "abc", "", True, None])
def test_parse_positive_number_rejects_invalid_values(value: object) -> None:
    """Zero, negatives, booleans, and non-numeric text are rejected."""

    with pytest.raises(ValueError, match="`timeout` must be a positive number"):
        parse_positive_number(value, "timeout")


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, 10), ("abc", 10), (True, 10), (0, 1), (-5, 1), (25, 25), ("100", 50), (" 7 ", 7)],
)
def test_clamp_page_limit(value: object, expected: int) -> None:
    """Page limits clamp to 1..50 and fall back to 10 when unparseable."""

    assert clamp_page_limit(value) == expected
