# app/utils/aws.py
from __future__ import annotations

"""
🧊 StreamVault • S3 media presigner
===================================

The only S3 operation the entitlement subsystem performs is minting a
short-lived SigV4 **presigned GET** for a private media object. Presigning is
local (no network call), so failures mean bad input or unusable credentials;
both surface as `S3StorageError`.

Rules
-----
- The media bucket stays private; access is only ever via presigned GETs.
- Object keys are normalized (no leading slash, no `//`, no `..`).
- Credentials come from settings when both halves are present, otherwise
  from the default AWS chain (env, profile, instance role, IRSA).
- Secrets and signed URLs are never logged.
"""

import logging
import re
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config as BotoConfig

from app.core.config import settings

logger = logging.getLogger(__name__)


class S3StorageError(RuntimeError):
    """S3 could not produce a URL for the requested media key."""


_MEDIA_KEY_RE = re.compile(r"[A-Za-z0-9._\-/+=@() ]+")
_MAX_TTL_SECONDS = 7 * 24 * 3600  # SigV4 ceiling


def normalize_media_key(key: str) -> str:
    """`/videos//v1.mp4` → `videos/v1.mp4`; rejects traversal and odd characters."""
    cleaned = re.sub(r"/{2,}", "/", str(key or "").strip().lstrip("/"))
    if not cleaned:
        raise S3StorageError("Empty media key")
    if ".." in cleaned.split("/"):
        raise S3StorageError("Media key must not contain '..' segments")
    if not _MEDIA_KEY_RE.fullmatch(cleaned):
        raise S3StorageError("Media key contains unsupported characters")
    return cleaned


def _build_boto_client(region: str, endpoint_url: Optional[str]) -> Any:
    cfg = BotoConfig(
        signature_version="s3v4",
        retries={"max_attempts": 3, "mode": "standard"},
        connect_timeout=3,
        read_timeout=10,
        s3={"addressing_style": "virtual"},
    )
    kwargs: Dict[str, Any] = {"config": cfg, "region_name": region}
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url

    secret = settings.AWS_SECRET_ACCESS_KEY.get_secret_value() if settings.AWS_SECRET_ACCESS_KEY else None
    if settings.AWS_ACCESS_KEY_ID and secret:
        kwargs["aws_access_key_id"] = settings.AWS_ACCESS_KEY_ID
        kwargs["aws_secret_access_key"] = secret

    try:
        return boto3.client("s3", **kwargs)
    except Exception as e:  # pragma: no cover
        raise S3StorageError(f"Failed to create S3 client: {e}") from e


class S3Client:
    """
    Presigning client bound to one media bucket.

    Parameters
    ----------
    bucket : str | None
        Defaults to `settings.AWS_BUCKET_NAME`; required.
    region_name : str | None
        Defaults to `settings.AWS_REGION`.
    endpoint_url : str | None
        S3-compatible endpoint (MinIO, LocalStack); defaults to
        `settings.AWS_S3_ENDPOINT_URL`.
    client : Any | None
        Pre-built boto3 client; tests pass a stub.
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        *,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        client: Any = None,
    ) -> None:
        self.bucket = bucket or settings.AWS_BUCKET_NAME
        if not self.bucket:
            raise S3StorageError("AWS_BUCKET_NAME not configured")
        self.region = region_name or settings.AWS_REGION
        self.endpoint_url = endpoint_url or settings.AWS_S3_ENDPOINT_URL
        self.client = client if client is not None else _build_boto_client(self.region, self.endpoint_url)

    def presigned_get(self, key: str, *, expires_in: int = 60) -> str:
        """Presigned GET for `key`, valid for `expires_in` seconds (1s to 7 days)."""
        ttl = int(expires_in)
        if ttl <= 0 or ttl > _MAX_TTL_SECONDS:
            raise S3StorageError(f"Presign TTL out of range: {ttl}")
        try:
            return self.client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": normalize_media_key(key)},
                ExpiresIn=ttl,
            )
        except S3StorageError:
            raise
        except Exception as e:
            logger.warning("Presign failed for bucket %s: %s", self.bucket, type(e).__name__)
            raise S3StorageError(f"Failed to create presigned GET: {e}") from e

    def __repr__(self) -> str:  # pragma: no cover
        return f"S3Client(bucket={self.bucket}, region={self.region}, endpoint={'yes' if self.endpoint_url else 'no'})"


__all__ = ["S3Client", "S3StorageError", "normalize_media_key"]
