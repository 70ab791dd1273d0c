"""Signature helpers: content hashing, image decoding and transient upload."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time
from dataclasses import dataclass

from contractflow.core.exceptions import ValidationError
from contractflow.database.models import Contract, Signature
from contractflow.services.storage import ObjectStorage, transient_signature_path

MAX_SIGNATURE_BYTES = 2 * 1024 * 1024
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


@dataclass(frozen=True)
class StoredImage:
    path: str
    url: str


def content_hash(content: str | None) -> str:
    """SHA-256 hex digest of the exact contract body."""
    return hashlib.sha256((content or "").encode("utf-8")).hexdigest()


def verify_signature(signature: Signature | None, contract: Contract) -> bool:
    if signature is None or not signature.contract_hash:
        return False
    return hmac.compare_digest(signature.contract_hash, content_hash(contract.content))


def decode_data_url(data_url: str) -> bytes:
    """Decode a ``data:image/png;base64,...`` signature capture."""
    header, sep, payload = (data_url or "").partition(",")
    if not sep or not header.startswith("data:image/png") or ";base64" not in header:
        raise ValidationError("Signature image must be a base64 PNG data URL.")
    try:
        image = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Signature image is not valid base64.") from exc
    if not image.startswith(PNG_MAGIC):
        raise ValidationError("Signature image is not a PNG.")
    if len(image) > MAX_SIGNATURE_BYTES:
        raise ValidationError("Signature image is too large.")
    return image


def upload_transient_signature(
    storage: ObjectStorage,
    company_id: str,
    contract_id: str,
    signer_id: str,
    image: bytes,
) -> StoredImage:
    path = transient_signature_path(company_id, contract_id, signer_id, int(time.time() * 1000))
    url = storage.put(path, image, content_type="image/png")
    return StoredImage(path=path, url=url)
