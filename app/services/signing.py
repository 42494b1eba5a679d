from __future__ import annotations

"""
Storage signers for time-limited media URLs.

Two backends share one interface, `sign(path, expires_in) -> str`:

- `S3StorageSigner`: SigV4 presigned GET against the private media bucket.
- `HmacStorageSigner`: CDN-style URL whose query carries `exp` and an
  HMAC-SHA256 over `path|purpose|exp`; the edge validates it with the same
  secret.

Signers never decide *whether* a caller may watch; they only bound *how long*
a URL stays valid. Any failure raises `SigningError`.
"""

import hashlib
import hmac
import time
from typing import Callable, Optional, Protocol
from urllib.parse import quote

from app.core.config import settings
from app.core.logger import logger
from app.utils.aws import S3Client, S3StorageError


class SigningError(RuntimeError):
    """The storage backend could not produce a signed URL."""


class StorageSigner(Protocol):
    name: str

    def sign(self, path: str, expires_in: int) -> str:
        ...


def _safe_path(resource_path: str) -> str:
    """Leading slash, no empty/`.`/`..` segments."""
    resource_path = "/" + str(resource_path or "").lstrip("/")
    safe = "/" + "/".join(seg for seg in resource_path.split("/") if seg and seg not in {"..", "."})
    if safe == "/":
        raise SigningError("Empty storage path")
    return safe


class HmacStorageSigner:
    """CDN-friendly HMAC-signed URLs.

    Configuration:
    - STREAM_URL_SIGNING_SECRET: required.
    - STREAM_BASE_URL: prefix for signed resources (default "/media").
    """

    name = "hmac"

    def __init__(
        self,
        secret: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        purpose: str = "stream",
        time_fn: Callable[[], float] = time.time,
    ) -> None:
        if secret is None and settings.STREAM_URL_SIGNING_SECRET is not None:
            secret = settings.STREAM_URL_SIGNING_SECRET.get_secret_value()
        if not secret:
            raise SigningError("Signing secret not configured")
        self._secret = secret.encode("utf-8")
        self.base_url = (base_url if base_url is not None else settings.STREAM_BASE_URL).rstrip("/")
        self.purpose = purpose
        self._time = time_fn

    def signature(self, path: str, exp: int) -> str:
        to_sign = f"{path}|{self.purpose}|{exp}".encode("utf-8")
        return hmac.new(self._secret, to_sign, hashlib.sha256).hexdigest()

    def sign(self, path: str, expires_in: int) -> str:
        safe_path = _safe_path(path)
        exp = int(self._time()) + int(expires_in)
        sig = self.signature(safe_path, exp)
        return f"{self.base_url}{quote(safe_path)}?exp={exp}&sig={sig}&use={self.purpose}"

    def verify(self, path: str, exp: int, sig: str, *, now: Optional[float] = None) -> bool:
        """Edge-side check: signature matches and `exp` has not passed."""
        current = self._time() if now is None else now
        if int(exp) <= int(current):
            return False
        expected = self.signature(_safe_path(path), int(exp))
        return hmac.compare_digest(expected, sig)


class S3StorageSigner:
    """Presigned S3 GETs via `S3Client`."""

    name = "s3"

    def __init__(self, client: Optional[S3Client] = None) -> None:
        try:
            self.client = client or S3Client()
        except S3StorageError as e:
            raise SigningError(str(e)) from e

    def sign(self, path: str, expires_in: int) -> str:
        try:
            return self.client.presigned_get(path, expires_in=int(expires_in))
        except S3StorageError as e:
            logger.warning("S3 presign failed: {}", e)
            raise SigningError(str(e)) from e


def build_storage_signer(kind: Optional[str] = None) -> StorageSigner:
    """Signer selected by `STORAGE_SIGNER` ("s3" or "hmac")."""
    kind = (kind or settings.STORAGE_SIGNER).lower()
    if kind == "hmac":
        return HmacStorageSigner()
    if kind == "s3":
        return S3StorageSigner()
    raise SigningError(f"Unknown storage signer: {kind}")


__all__ = [
    "SigningError",
    "StorageSigner",
    "HmacStorageSigner",
    "S3StorageSigner",
    "build_storage_signer",
]
