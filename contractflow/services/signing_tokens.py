"""Signing-link credentials: the only authorization boundary for clients.

Only an HMAC of the raw token is stored. The raw value leaves this module once,
at issuance, and is never logged.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from contractflow.core.config import Config, get_config
from contractflow.core.enums import ContractStatus
from contractflow.core.exceptions import (
    ContractCancelledError,
    RateLimitedError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenInvalidError,
)
from contractflow.database.models import Contract
from contractflow.database.store import ContractStore
from contractflow.utils.clock import utcnow

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
MAX_TOKEN_LENGTH = 128

_OPEN_STATUSES = [status.value for status in ContractStatus if status is not ContractStatus.CANCELLED]


@dataclass(frozen=True)
class IssuedToken:
    raw: str
    token_hash: str
    expires_at: datetime


def hash_token(raw: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw.encode("utf-8"), hashlib.sha256).hexdigest()


class SigningTokenManager:
    def __init__(self, store: ContractStore, config: Config | None = None) -> None:
        self.store = store
        self.config = config or get_config()

    def issue(self) -> IssuedToken:
        raw = secrets.token_urlsafe(TOKEN_BYTES)
        return IssuedToken(
            raw=raw,
            token_hash=hash_token(raw, self.config.SIGNING_TOKEN_SECRET),
            expires_at=utcnow() + timedelta(days=self.config.SIGNING_TOKEN_TTL_DAYS),
        )

    def signing_url(self, raw: str) -> str:
        return f"{self.config.APP_BASE_URL}/sign/{raw}"

    def validate(
        self,
        raw: str,
        ip_address: str | None = None,
        one_time: bool = False,
        record_use: bool = False,
    ) -> Contract:
        """Resolve a raw token to its contract or raise a specific token error.

        ``one_time`` rejects a token whose first use is already recorded.
        ``record_use`` stamps the first-use marker; the stamp is part of the
        caller's transaction and is not committed here.
        """
        if ip_address:
            self._check_rate_limit(ip_address)

        if not raw or len(raw) > MAX_TOKEN_LENGTH:
            self._reject(ip_address, None, "invalid")
            raise TokenInvalidError("This signing link is not valid.")

        token_hash = hash_token(raw, self.config.SIGNING_TOKEN_SECRET)
        contract = self.store.find_contract_by_token_hash(token_hash)
        if contract is None or not hmac.compare_digest(contract.signing_token_hash or "", token_hash):
            self._reject(ip_address, None, "invalid")
            raise TokenInvalidError("This signing link is not valid.")

        if contract.status == ContractStatus.CANCELLED.value:
            self._reject(ip_address, contract.id, "cancelled")
            raise ContractCancelledError("This contract has been cancelled.", contract_id=contract.id)

        # A missing expiry is a legacy link that never expires.
        expires_at = contract.signing_token_expires_at
        if expires_at is not None and utcnow() > expires_at:
            self._reject(ip_address, contract.id, "expired")
            raise TokenExpiredError(
                "This signing link has expired. Ask the sender for a new link.", contract_id=contract.id
            )

        if one_time and contract.signing_token_used_at is not None:
            self._reject(ip_address, contract.id, "already_used")
            raise TokenAlreadyUsedError("This signing link has already been used.", contract_id=contract.id)

        if record_use and contract.signing_token_used_at is None:
            stamped = self.store.update_contract_where(
                contract.id,
                _OPEN_STATUSES,
                {"signing_token_used_at": utcnow()},
                extra_conditions=(
                    Contract.signing_token_hash == token_hash,
                    Contract.signing_token_used_at.is_(None),
                ),
            )
            if not stamped and one_time:
                self._reject(ip_address, contract.id, "already_used")
                raise TokenAlreadyUsedError("This signing link has already been used.", contract_id=contract.id)

        if ip_address:
            self.store.record_signing_attempt(ip_address, succeeded=True, contract_id=contract.id)
        return contract

    def _check_rate_limit(self, ip_address: str) -> None:
        since = utcnow() - timedelta(minutes=self.config.SIGNING_RATE_LIMIT_WINDOW_MINUTES)
        failures = self.store.count_failed_attempts(ip_address, since)
        if failures >= self.config.SIGNING_RATE_LIMIT_MAX_ATTEMPTS:
            logger.warning("signing.rate_limited", extra={"event": "signing.rate_limited"})
            raise RateLimitedError("Too many attempts. Try again later.")

    def _reject(self, ip_address: str | None, contract_id: str | None, reason: str) -> None:
        logger.info(
            "signing.token_rejected",
            extra={"event": "signing.token_rejected", "contract_id": contract_id, "status": reason},
        )
        if not ip_address:
            return
        # Failed attempts must survive the caller's rollback.
        self.store.record_signing_attempt(ip_address, succeeded=False, contract_id=contract_id, reason=reason)
        self.store.db.commit()
