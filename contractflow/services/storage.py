"""S3-compatible object storage for contract artifacts.

Artifact keys are deterministic per contract, so writing the same artifact
twice overwrites instead of duplicating.
"""

from __future__ import annotations

import enum
import logging
from typing import Any

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from contractflow.core.config import Config, get_config
from contractflow.core.exceptions import StorageError, ValidationError

logger = logging.getLogger(__name__)


class ArtifactKind(str, enum.Enum):
    FINAL_DOCUMENT = "final_document"
    SIGNATURE_IMAGE = "signature_image"
    ATTACHMENT = "attachment"


def contract_artifact_path(
    kind: ArtifactKind,
    company_id: str,
    contract_id: str,
    name: str | None = None,
) -> str:
    base = f"company/{company_id}/contracts/{contract_id}"
    if kind is ArtifactKind.FINAL_DOCUMENT:
        return f"{base}/final.pdf"
    if kind is ArtifactKind.SIGNATURE_IMAGE:
        return f"{base}/signature.png"
    if not name or "/" in name or name in {".", ".."}:
        raise ValidationError("Attachment name must be a plain file name.")
    return f"{base}/attachments/{name}"


def transient_signature_path(company_id: str, contract_id: str, signer_id: str, timestamp_ms: int) -> str:
    """Upload location used at signing time, before finalization moves the image."""
    return f"signatures/{company_id}/{contract_id}/{signer_id}/signature-{timestamp_ms}.png"


def _normalize_endpoint(url: str | None) -> str | None:
    if not url:
        return url
    if url.startswith("http://") or url.startswith("https://"):
        return url
    return f"http://{url}"


def build_s3_client(config: Config) -> Any:
    session = boto3.Session(
        aws_access_key_id=config.STORAGE_ACCESS_KEY_ID,
        aws_secret_access_key=config.STORAGE_SECRET_ACCESS_KEY,
        region_name=config.STORAGE_REGION,
    )
    return session.client(
        "s3",
        endpoint_url=_normalize_endpoint(config.STORAGE_ENDPOINT_URL),
        config=BotoConfig(signature_version="s3v4"),
    )


class ObjectStorage:
    """put/get/delete over a single bucket."""

    def __init__(self, client: Any = None, config: Config | None = None) -> None:
        self.config = config or get_config()
        self.bucket = self.config.STORAGE_BUCKET
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = build_s3_client(self.config)
        return self._client

    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Write ``data`` at ``path`` (overwriting) and return an access URL."""
        try:
            self.client.put_object(Bucket=self.bucket, Key=path, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            logger.exception("storage.put_failed", extra={"event": "storage.put_failed", "path": path})
            raise StorageError(f"Failed to store object at {path}.", path=path) from exc
        logger.info("storage.put", extra={"event": "storage.put", "path": path})
        return self.url_for(path)

    def get(self, path: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=path)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to read object at {path}.", path=path) from exc

    def delete(self, path: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=path)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to delete object at {path}.", path=path) from exc

    def url_for(self, path: str) -> str:
        if self.config.STORAGE_PUBLIC_BASE_URL:
            return f"{self.config.STORAGE_PUBLIC_BASE_URL.rstrip('/')}/{path}"
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": path},
                ExpiresIn=self.config.STORAGE_URL_TTL_SECONDS,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to sign URL for {path}.", path=path) from exc
