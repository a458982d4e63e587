"""
Media Storage Client

Object storage for report and resolution photos.

Backends:
- CloudinaryStorage: the Cloudinary SDK, run in a worker thread
- NullStorage: used when no storage is configured; uploads are skipped

Storage is a best-effort side call: every method returns None/False on
failure instead of raising, so a flaky upload never aborts a mutation.
"""

import asyncio
import io
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import cloudinary.exceptions
import cloudinary.uploader

from civicpulse.utils.config import get_settings

logger = logging.getLogger(__name__)


class MediaStorage(ABC):
    """Upload(bytes) -> url, Delete(url)."""

    @abstractmethod
    async def upload(
        self,
        data: bytes,
        filename: str,
        content_type: Optional[str] = None,
        folder: str = "civicpulse",
    ) -> Optional[str]:
        ...

    @abstractmethod
    async def delete(self, url: str) -> bool:
        ...

    async def close(self):
        pass


class NullStorage(MediaStorage):
    """No storage configured."""

    async def upload(self, data, filename, content_type=None, folder="civicpulse") -> Optional[str]:
        logger.warning(f"Media storage not configured, skipping upload of {filename}")
        return None

    async def delete(self, url: str) -> bool:
        return False


class CloudinaryStorage(MediaStorage):
    """
    Cloudinary via its Python SDK.

    Uses an unsigned upload preset when one is configured, otherwise the
    SDK signs requests with the API secret. Credentials travel with each
    call, so nothing touches the SDK's global config.
    """

    def __init__(
        self,
        cloud_name: str,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        upload_preset: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.upload_preset = upload_preset
        self.timeout = timeout

    @property
    def _credentials(self) -> Dict[str, Any]:
        return {
            "cloud_name": self.cloud_name,
            "api_key": self.api_key,
            "api_secret": self.api_secret,
            "timeout": self.timeout,
        }

    @staticmethod
    def public_id_from_url(url: str) -> Optional[str]:
        """
        Delivery URL -> public id (the SDK only builds URLs, it does not parse them).

        https://res.cloudinary.com/<cloud>/image/upload/v123/folder/name.jpg -> folder/name
        """
        path = urlparse(url).path
        if "/upload/" not in path:
            return None
        segments = path.split("/upload/", 1)[1].split("/")
        if segments and segments[0].startswith("v") and segments[0][1:].isdigit():
            segments = segments[1:]
        if not segments or not segments[-1]:
            return None
        public_id = "/".join(segments)
        return public_id.rsplit(".", 1)[0] if "." in segments[-1] else public_id

    async def upload(
        self,
        data: bytes,
        filename: str,
        content_type: Optional[str] = None,
        folder: str = "civicpulse",
    ) -> Optional[str]:
        options = dict(self._credentials, folder=folder, resource_type="auto", filename=filename)

        try:
            if self.upload_preset:
                result = await asyncio.to_thread(
                    cloudinary.uploader.unsigned_upload, io.BytesIO(data), self.upload_preset, **options
                )
            elif self.api_key and self.api_secret:
                result = await asyncio.to_thread(cloudinary.uploader.upload, io.BytesIO(data), **options)
            else:
                logger.error("Cloudinary credentials incomplete, skipping upload")
                return None
        except (cloudinary.exceptions.Error, OSError) as e:
            logger.error(f"Cloudinary upload failed for {filename}: {e}")
            return None

        url = result.get("secure_url")
        if url:
            logger.info(f"Uploaded {filename} to Cloudinary")
        return url

    async def delete(self, url: str) -> bool:
        public_id = self.public_id_from_url(url)
        if not public_id or not (self.api_key and self.api_secret):
            return False

        try:
            result = await asyncio.to_thread(cloudinary.uploader.destroy, public_id, **self._credentials)
        except (cloudinary.exceptions.Error, OSError) as e:
            logger.error(f"Cloudinary delete failed for {public_id}: {e}")
            return False
        return result.get("result") == "ok"


def build_storage() -> MediaStorage:
    """Pick the storage backend from settings."""
    settings = get_settings()
    if settings.CLOUDINARY_CLOUD_NAME:
        return CloudinaryStorage(
            cloud_name=settings.CLOUDINARY_CLOUD_NAME,
            api_key=settings.CLOUDINARY_API_KEY,
            api_secret=settings.CLOUDINARY_API_SECRET,
            upload_preset=settings.CLOUDINARY_UPLOAD_PRESET,
            timeout=settings.API_TIMEOUT,
        )
    return NullStorage()
