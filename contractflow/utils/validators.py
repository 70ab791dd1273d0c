"""Deterministic validators and sanitizers used across services."""

from __future__ import annotations

import html


def sanitize_text(value: str | None, max_len: int = 20000) -> str:
    """Sanitize free-form content before persistence/display."""
    if value is None:
        return ""
    cleaned = str(value).replace("\x00", "").strip()
    cleaned = cleaned[:max_len]
    return cleaned


def escape_markup(value: str | None, max_len: int = 200000) -> str:
    """Escape user text before embedding it in HTML-like markup."""
    return html.escape(sanitize_text(value, max_len=max_len))
