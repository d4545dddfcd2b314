"""
Media uploads to third-party hosts.

Both uploaders take a path to a temporary file and return a durable HTTPS
URL. The temporary file is removed whether the upload succeeds or not.
"""
from __future__ import annotations

import hashlib
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from storefront.config import Config
from storefront.observability import increment_counter
from storefront.services.errors import StorefrontError

logger = logging.getLogger(__name__)


class UploadError(StorefrontError):
    status_code = 502


def allowed_file(filename: str) -> bool:
    if not filename or "." not in filename:
        return False
    return filename.rsplit(".", 1)[1].lower() in Config.UPLOAD_ALLOWED_EXTENSIONS


def remove_temp_file(file_path: str) -> None:
    try:
        os.remove(file_path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove temporary upload %s: %s", file_path, exc)


class MediaUploader:
    provider = "base"

    def __init__(self, http: Any = requests, timeout: Optional[int] = None) -> None:
        self.http = http
        self.timeout = timeout or Config.UPLOAD_TIMEOUT_SECONDS

    def upload(self, file_path: str, folder: str = "products") -> str:
        try:
            url = self._upload(file_path, folder)
        except requests.RequestException as exc:
            increment_counter("uploads_failed_total", labels={"provider": self.provider})
            raise UploadError(f"{self.provider} upload failed: {exc}") from exc
        except UploadError:
            increment_counter("uploads_failed_total", labels={"provider": self.provider})
            raise
        finally:
            remove_temp_file(file_path)

        if not url.startswith("https://"):
            increment_counter("uploads_failed_total", labels={"provider": self.provider})
            raise UploadError(f"{self.provider} returned a non-HTTPS URL")
        increment_counter("uploads_total", labels={"provider": self.provider})
        logger.info("Uploaded %s to %s", Path(file_path).name, self.provider, extra={"folder": folder})
        return url

    def _upload(self, file_path: str, folder: str) -> str:
        raise NotImplementedError


class ImgBBUploader(MediaUploader):
    """Product images."""

    provider = "imgbb"

    def __init__(self, api_key: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.api_key = Config.IMGBB_API_KEY if api_key is None else api_key

    def _upload(self, file_path: str, folder: str) -> str:
        if not self.api_key:
            raise UploadError("IMGBB_API_KEY not configured")
        with open(file_path, "rb") as handle:
            response = self.http.post(
                Config.IMGBB_API_URL,
                data={"key": self.api_key, "name": f"{folder}-{Path(file_path).stem}"},
                files={"image": handle},
                timeout=self.timeout,
            )
        data = response.json()
        if not data.get("success"):
            raise UploadError(f"ImgBB upload failed: {data}")
        return data["data"]["url"]


class CloudinaryUploader(MediaUploader):
    """Checkout payment screenshots."""

    provider = "cloudinary"

    def __init__(
        self,
        cloud_name: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.cloud_name = Config.CLOUDINARY_CLOUD_NAME if cloud_name is None else cloud_name
        self.api_key = Config.CLOUDINARY_API_KEY if api_key is None else api_key
        self.api_secret = Config.CLOUDINARY_API_SECRET if api_secret is None else api_secret

    def sign(self, params: Dict[str, Any]) -> str:
        to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params))
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode("utf-8")).hexdigest()

    def _upload(self, file_path: str, folder: str) -> str:
        if not (self.cloud_name and self.api_key and self.api_secret):
            raise UploadError("Cloudinary environment variables missing")

        params = {"folder": folder, "timestamp": int(time.time())}
        endpoint = f"https://api.cloudinary.com/v1_1/{self.cloud_name}/image/upload"
        with open(file_path, "rb") as handle:
            response = self.http.post(
                endpoint,
                data={**params, "api_key": self.api_key, "signature": self.sign(params)},
                files={"file": handle},
                timeout=self.timeout,
            )
        data = response.json()
        if response.status_code >= 400 or "secure_url" not in data:
            raise UploadError(f"Cloudinary upload failed: {data.get('error', data)}")
        return data["secure_url"]
