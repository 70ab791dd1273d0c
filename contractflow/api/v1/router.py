"""Root API router for v1 endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from contractflow.api.v1 import contracts, health, payments, signing
from contractflow.core.config import get_config

api_router = APIRouter(prefix=get_config().API_PREFIX)
api_router.include_router(health.router)
api_router.include_router(contracts.router)
api_router.include_router(signing.router)
api_router.include_router(payments.router)


def get_api_router() -> APIRouter:
    return api_router
