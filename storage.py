"""
Product image storage.

`IMAGE_STORAGE=local` keeps files under UPLOAD_DIR (served at /uploads),
`IMAGE_STORAGE=cloudinary` pushes them to Cloudinary's upload API.
"""
import hashlib
import logging
import os
import time
import uuid

import httpx

import config

logger = logging.getLogger(__name__)

ALLOWED_TYPES = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp", "image/gif": ".gif"}


class StorageError(Exception):
    pass


def _extension(filename: str, content_type: str) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    return ext or ALLOWED_TYPES.get(content_type, "")


def save_local(content: bytes, filename: str, content_type: str) -> str:
    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    name = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{_extension(filename, content_type)}"
    path = os.path.join(config.UPLOAD_DIR, name)
    try:
        with open(path, "wb") as f:
            f.write(content)
    except OSError as e:
        raise StorageError(str(e)) from e
    return f"{config.BACKEND_URL}/uploads/{name}"


def cloudinary_signature(params: dict) -> str:
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
    return hashlib.sha1((to_sign + config.CLOUDINARY_API_SECRET).encode()).hexdigest()


def save_cloudinary(content: bytes, filename: str, content_type: str) -> str:
    if not (config.CLOUDINARY_CLOUD_NAME and config.CLOUDINARY_API_KEY and config.CLOUDINARY_API_SECRET):
        raise StorageError("Cloudinary is not configured")
    params = {"folder": config.CLOUDINARY_FOLDER, "timestamp": int(time.time())}
    data = {**params, "api_key": config.CLOUDINARY_API_KEY, "signature": cloudinary_signature(params)}
    url = f"https://api.cloudinary.com/v1_1/{config.CLOUDINARY_CLOUD_NAME}/image/upload"
    try:
        response = httpx.post(url, data=data, files={"file": (filename or "image", content, content_type)},
                              timeout=config.GATEWAY_TIMEOUT)
        response.raise_for_status()
        return response.json()["secure_url"]
    except (httpx.HTTPError, KeyError, ValueError) as e:
        raise StorageError(str(e)) from e


def save_image(content: bytes, filename: str, content_type: str) -> str:
    """Store an uploaded image and return its public URL."""
    if content_type not in ALLOWED_TYPES:
        raise StorageError(f"Unsupported image type '{content_type}'")
    if config.IMAGE_STORAGE == "cloudinary":
        url = save_cloudinary(content, filename, content_type)
    else:
        url = save_local(content, filename, content_type)
    logger.info("Stored image %s -> %s", filename, url)
    return url
