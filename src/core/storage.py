"""
Image storage.

Generated image bytes are uploaded unchanged to Cloudflare R2 (S3-compatible,
via aioboto3) when it is configured, and referenced through the
``/api/v1/images/{key}`` redirect route. Without R2 the provider's data URL
or remote URL is stored as-is.
"""

import logging
import os
import uuid
from typing import Optional

import aioboto3
from botocore.config import Config as BotoConfig

from src.core.provider import ProviderImage

logger = logging.getLogger(__name__)

IMAGE_ROUTE_PREFIX = "/api/v1/images/"
PRESIGNED_URL_EXPIRATION = 3600

_storage: Optional["R2Storage"] = None


class R2Storage:
    """Async wrapper around Cloudflare R2 (S3-compatible) using aioboto3."""

    def __init__(
        self,
        account_id: str,
        access_key_id: str,
        secret_access_key: str,
        bucket_name: str,
    ):
        self.bucket_name = bucket_name
        self.endpoint_url = f"https://{account_id}.r2.cloudflarestorage.com"
        self._session = aioboto3.Session()
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key

    def _client(self):
        """Return an async context-manager S3 client."""
        return self._session.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self._access_key_id,
            aws_secret_access_key=self._secret_access_key,
            config=BotoConfig(signature_version="s3v4"),
        )

    async def upload_bytes(
        self, data: bytes, key: str, content_type: str = "application/octet-stream"
    ) -> None:
        async with self._client() as client:
            await client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        logger.debug(f"Uploaded {len(data)} bytes to {key}")

    async def generate_presigned_url(self, key: str, expiration: int = PRESIGNED_URL_EXPIRATION) -> str:
        """Generate a presigned GET URL for an object."""
        async with self._client() as client:
            url = await client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=expiration,
            )
        return url


def is_r2_configured() -> bool:
    """Check whether all R2 env vars are set (sync, no I/O)."""
    return all(
        os.getenv(var)
        for var in (
            "R2_ACCOUNT_ID",
            "R2_ACCESS_KEY_ID",
            "R2_SECRET_ACCESS_KEY",
            "R2_BUCKET_NAME",
        )
    )


def get_storage() -> R2Storage:
    """Return module-level R2Storage singleton. Raises if not configured."""
    global _storage
    if _storage is not None:
        return _storage

    if not is_r2_configured():
        raise RuntimeError(
            "R2 storage not configured. Set R2_ACCOUNT_ID, R2_ACCESS_KEY_ID, "
            "R2_SECRET_ACCESS_KEY, and R2_BUCKET_NAME environment variables."
        )

    _storage = R2Storage(
        account_id=os.environ["R2_ACCOUNT_ID"],
        access_key_id=os.environ["R2_ACCESS_KEY_ID"],
        secret_access_key=os.environ["R2_SECRET_ACCESS_KEY"],
        bucket_name=os.environ["R2_BUCKET_NAME"],
    )
    return _storage


def key_from_reference(ref: Optional[str]) -> Optional[str]:
    """Return the storage key behind an image route reference, if it is one."""
    if ref and ref.startswith(IMAGE_ROUTE_PREFIX):
        return ref[len(IMAGE_ROUTE_PREFIX):]
    return None


class ImagePublisher:
    """Turns provider images into the references stored on a story."""

    def __init__(self, storage: Optional[R2Storage] = None):
        self.storage = storage

    @classmethod
    def from_env(cls) -> "ImagePublisher":
        return cls(get_storage() if is_r2_configured() else None)

    async def publish(self, story_id: str, label: str, image: ProviderImage) -> str:
        """
        Store an image and return its reference.

        Inline bytes go to R2 under ``images/<story_id>/<label>_<version>.png``.
        If the upload fails the data URL is kept, so the result is never lost.
        """
        if image.data is None or self.storage is None:
            return image.url

        key = f"images/{story_id}/{label}_{uuid.uuid4().hex[:12]}.png"
        try:
            await self.storage.upload_bytes(image.data, key, image.content_type)
        except Exception as e:
            logger.error(f"[{story_id}] R2 upload failed for {label}, keeping data URL: {e}")
            return image.url
        return IMAGE_ROUTE_PREFIX + key

    async def provider_reference(self, ref: Optional[str]) -> Optional[str]:
        """Resolve a stored reference into a URL the provider can fetch."""
        key = key_from_reference(ref)
        if key is None or self.storage is None:
            return ref
        return await self.storage.generate_presigned_url(key)
