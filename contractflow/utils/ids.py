"""Identifier generation helpers."""

from __future__ import annotations

import uuid


def new_id() -> str:
    """Create a UUID4-based opaque row identifier."""
    return str(uuid.uuid4())
