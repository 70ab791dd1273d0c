from __future__ import annotations

from decimal import Decimal

import pytest

from contractflow.core.exceptions import ValidationError
from contractflow.utils.money import format_cents, from_cents, to_cents
from contractflow.utils.validators import escape_markup, sanitize_text


def test_sanitize_text_strips_null_and_trims():
    assert sanitize_text("  hello\x00world  ") == "helloworld"


def test_sanitize_text_truncates_and_handles_none():
    assert sanitize_text(None) == ""
    assert sanitize_text("abcdef", max_len=3) == "abc"


def test_escape_markup_escapes_tags():
    assert escape_markup("<b>Deck & rail</b>") == "&lt;b&gt;Deck &amp; rail&lt;/b&gt;"


@pytest.mark.parametrize(
    ("amount", "cents"),
    [(Decimal("1000.00"), 100000), ("300.5", 30050), (0, 0), ("0.005", 1), (19.99, 1999)],
)
def test_to_cents(amount, cents):
    assert to_cents(amount) == cents


@pytest.mark.parametrize("amount", ["abc", "NaN", "Infinity"])
def test_to_cents_rejects_non_numbers(amount):
    with pytest.raises(ValidationError):
        to_cents(amount)


def test_from_cents_and_format():
    assert from_cents(70000) == Decimal("700.00")
    assert from_cents(None) == Decimal("0.00")
    assert format_cents(123456) == "$1,234.56"
    assert format_cents(500, "eur") == "EUR 5.00"
