"""
Media host adapter

Products keep their pictures on Cloudinary. Every stored image is a
``{"url", "public_id"}`` pair; the public id is what the host needs to delete
it later.
"""

import hashlib
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Protocol

import requests

from config import MAX_PRODUCT_IMAGES, Settings
from errors import UpstreamError

logger = logging.getLogger(__name__)

CLOUDINARY_API = "https://api.cloudinary.com/v1_1"
REQUEST_TIMEOUT = 30


class MediaHost(Protocol):
    def upload(self, payload: str, folder: str) -> Dict[str, str]:
        ...

    def destroy(self, public_id: str) -> None:
        ...


def to_data_url(payload: str) -> str:
    """Accept a data URL or bare base64 and return a JPEG data URL."""
    if not payload:
        raise ValueError("No image provided")
    data = payload.split("base64,", 1)[1] if "base64," in payload else payload
    return f"data:image/jpeg;base64,{data}"


class CloudinaryMedia:
    def __init__(self, cloud_name: Optional[str], api_key: Optional[str], api_secret: Optional[str], session: Optional[requests.Session] = None):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "CloudinaryMedia":
        return cls(settings.cloudinary_cloud_name, settings.cloudinary_api_key, settings.cloudinary_api_secret)

    def _sign(self, params: Dict[str, str]) -> str:
        to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
        return hashlib.sha1((to_sign + (self.api_secret or "")).encode()).hexdigest()

    def _post(self, action: str, params: Dict[str, str], **extra) -> dict:
        if not (self.cloud_name and self.api_key and self.api_secret):
            raise UpstreamError("Media host is not configured")
        params = {**params, "timestamp": str(int(time.time()))}
        body = {**params, **extra, "api_key": self.api_key, "signature": self._sign(params)}
        try:
            resp = self.session.post(
                f"{CLOUDINARY_API}/{self.cloud_name}/image/{action}", data=body, timeout=REQUEST_TIMEOUT
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise UpstreamError(f"Image {action} failed", detail=str(e)) from e
        return resp.json()

    def upload(self, payload: str, folder: str) -> Dict[str, str]:
        result = self._post("upload", {"folder": folder}, file=to_data_url(payload))
        return {"url": result["secure_url"], "public_id": result["public_id"]}

    def destroy(self, public_id: str) -> None:
        if not public_id:
            raise ValueError("Public ID required")
        result = self._post("destroy", {"public_id": public_id})
        if result.get("result") not in ("ok", "not found"):
            raise UpstreamError("Image destroy failed", detail=str(result))


def upload_images(media: MediaHost, payloads: List[str], folder: str) -> List[Dict[str, str]]:
    """
    Upload up to MAX_PRODUCT_IMAGES payloads concurrently, keeping input order.

    All-or-nothing: if one upload fails the successful ones are released and
    UpstreamError is raised.
    """
    batch = [p for p in payloads if p][:MAX_PRODUCT_IMAGES]
    if not batch:
        return []
    with ThreadPoolExecutor(max_workers=len(batch)) as pool:
        futures = [pool.submit(media.upload, p, folder) for p in batch]
    uploaded, errors = [], []
    for fut in futures:
        try:
            uploaded.append(fut.result())
        except Exception as e:
            errors.append(e)
    if errors:
        release_images(media, [img["public_id"] for img in uploaded])
        first = errors[0]
        detail = first.detail if isinstance(first, UpstreamError) else str(first)
        raise UpstreamError("Image upload failed", detail=detail) from first
    return uploaded


def release_images(media: MediaHost, public_ids: Iterable[str]) -> List[str]:
    """Delete images independently and concurrently. Returns the ids that failed."""
    ids = [pid for pid in public_ids if pid]
    if not ids:
        return []

    def _release(public_id: str) -> Optional[str]:
        try:
            media.destroy(public_id)
        except Exception as e:
            logger.warning("Failed to delete image %s: %s", public_id, e)
            return public_id
        logger.info("Deleted image %s", public_id)
        return None

    with ThreadPoolExecutor(max_workers=len(ids)) as pool:
        results = list(pool.map(_release, ids))
    return [pid for pid in results if pid is not None]
