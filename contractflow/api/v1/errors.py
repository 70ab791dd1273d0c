"""Single place where domain errors become HTTP responses."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException, status

from contractflow.core.exceptions import (
    AmountMismatchError,
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    ContractFlowException,
    ContractLockedError,
    DatabaseError,
    GatewayError,
    InvalidTransitionError,
    NotFoundError,
    NothingToPayError,
    PreconditionFailedError,
    RateLimitedError,
    ServiceError,
    StorageError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenInvalidError,
    ValidationError,
)
from contractflow.schemas.common import ErrorEnvelope

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: dict[type[ContractFlowException], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    AuthenticationError: status.HTTP_401_UNAUTHORIZED,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    ContractLockedError: status.HTTP_409_CONFLICT,
    PreconditionFailedError: status.HTTP_412_PRECONDITION_FAILED,
    TokenInvalidError: status.HTTP_404_NOT_FOUND,
    TokenExpiredError: status.HTTP_410_GONE,
    TokenAlreadyUsedError: status.HTTP_410_GONE,
    RateLimitedError: status.HTTP_429_TOO_MANY_REQUESTS,
    AmountMismatchError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NothingToPayError: status.HTTP_409_CONFLICT,
    GatewayError: status.HTTP_502_BAD_GATEWAY,
    StorageError: status.HTTP_502_BAD_GATEWAY,
    DatabaseError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ServiceError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# Failures the payment provider should retry rather than treat as final.
RETRYABLE_ERRORS = (DatabaseError, ServiceError, StorageError, GatewayError, ConfigurationError)


def map_domain_error(exc: ContractFlowException) -> tuple[int, ErrorEnvelope]:
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for klass in type(exc).__mro__:
        if klass in STATUS_BY_ERROR:
            code = STATUS_BY_ERROR[klass]
            break
    detail = exc.message or "Request failed."
    return code, ErrorEnvelope(error_code=exc.error_code, detail=detail)


@contextmanager
def domain_errors() -> Iterator[None]:
    """Translate domain errors raised inside a handler into HTTPException."""
    try:
        yield
    except ContractFlowException as exc:
        code, envelope = map_domain_error(exc)
        if code >= 500:
            logger.exception("api.request_failed", extra={"event": "api.request_failed"})
        raise HTTPException(status_code=code, detail=envelope.model_dump()) from exc
