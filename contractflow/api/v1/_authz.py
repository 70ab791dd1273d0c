"""Shared authorization helpers for API v1 route modules."""

from __future__ import annotations

from contractflow.core.config import get_config
from contractflow.core.dependencies import CurrentContractor, get_current_contractor
from contractflow.core.exceptions import AuthenticationError


def _extract_bearer_token(authorization: str | None) -> str:
    if authorization is None or not authorization.strip():
        raise AuthenticationError("Authorization header is required.")
    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Authorization header must use Bearer token.")
    return parts[1].strip()


def authorize(authorization: str | None) -> CurrentContractor:
    token = _extract_bearer_token(authorization)
    return get_current_contractor(token=token, settings=get_config())


def client_ip(forwarded_for: str | None, fallback: str | None) -> str:
    if forwarded_for:
        return forwarded_for.split(",")[0].strip() or (fallback or "unknown")
    return fallback or "unknown"
