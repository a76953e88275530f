"""Attendance photo uploads to Cloudinary over its signed upload API."""

import hashlib
import logging
import time
from dataclasses import dataclass

import httpx

from timewise.core.config import get_settings

logger = logging.getLogger(__name__)

UPLOAD_TIMEOUT = 15.0


@dataclass
class UploadResult:
    success: bool
    url: str | None = None
    public_id: str | None = None
    error: str | None = None


def is_configured() -> bool:
    s = get_settings()
    return bool(s.cloudinary_cloud_name and s.cloudinary_api_key and s.cloudinary_api_secret)


def _sign(params: dict[str, str], api_secret: str) -> str:
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
    return hashlib.sha1((to_sign + api_secret).encode()).hexdigest()


async def upload_image(base64_image: str, folder: str, public_id: str | None = None) -> UploadResult:
    """Upload a base64 image (with or without a data URI prefix). Never raises."""
    if not base64_image:
        return UploadResult(success=False, error="No image provided")
    if not is_configured():
        return UploadResult(success=False, error="Image store is not configured")

    s = get_settings()
    data_uri = base64_image
    if not data_uri.startswith("data:"):
        data_uri = f"data:image/jpeg;base64,{base64_image}"

    params = {"folder": folder, "timestamp": str(int(time.time()))}
    if public_id:
        params["public_id"] = public_id
    form = {
        **params,
        "file": data_uri,
        "api_key": s.cloudinary_api_key,
        "signature": _sign(params, s.cloudinary_api_secret),
    }
    url = f"https://api.cloudinary.com/v1_1/{s.cloudinary_cloud_name}/image/upload"

    try:
        async with httpx.AsyncClient(timeout=UPLOAD_TIMEOUT) as client:
            resp = await client.post(url, data=form)
        resp.raise_for_status()
        body = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Image upload to %s failed: %s", folder, exc)
        return UploadResult(success=False, error=str(exc)[:200])

    return UploadResult(success=True, url=body.get("secure_url"), public_id=body.get("public_id"))


async def upload_attendance_photo(
    base64_image: str, tenant_id: str, staff_id: str, kind: str
) -> UploadResult:
    """``kind`` is ``check-in`` or ``check-out``; one folder per tenant and kind."""
    public_id = f"{staff_id}_{int(time.time() * 1000)}"
    return await upload_image(base64_image, f"timewise/{tenant_id}/{kind}", public_id)
