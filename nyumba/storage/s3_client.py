"""
S3-compatible object storage client for Nyumba.

Handles media upload, download, deletion and presigning against any
S3 API endpoint (Cloudflare R2, AWS S3), plus the Pillow helper used
to derive thumbnails.
"""

import io
import secrets
import time
from dataclasses import dataclass

import boto3
from botocore.config import Config
from PIL import Image, ImageOps

from nyumba.config import (
    STORAGE_ACCESS_KEY,
    STORAGE_BUCKET,
    STORAGE_ENDPOINT_URL,
    STORAGE_PUBLIC_URL,
    STORAGE_REGION,
    STORAGE_SECRET_KEY,
)

FOLDERS = ("products", "videos", "photos", "frames", "thumbnails", "composites", "temp")

_s3 = None


def _get_s3():
    """Return the shared boto3 S3 client, creating it on first use."""
    global _s3
    if _s3 is None:
        _s3 = boto3.client(
            "s3",
            endpoint_url=STORAGE_ENDPOINT_URL or None,
            aws_access_key_id=STORAGE_ACCESS_KEY or None,
            aws_secret_access_key=STORAGE_SECRET_KEY or None,
            config=Config(signature_version="s3v4"),
            region_name=STORAGE_REGION,
        )
    return _s3


@dataclass(frozen=True)
class StoredObject:
    key: str
    url: str


# ---------------------------------------------------------------------------
# Image helpers
# ---------------------------------------------------------------------------

def make_thumbnail(image_bytes: bytes, width: int = 400) -> bytes:
    """Scale an image to *width* pixels wide, keeping its aspect ratio.

    Images narrower than *width* are re-encoded without upscaling.
    """
    img = Image.open(io.BytesIO(image_bytes))
    img = ImageOps.exif_transpose(img).convert("RGB")

    w, h = img.size
    if w > width:
        new_h = max(1, round(h * width / w))
        img = img.resize((width, new_h), Image.LANCZOS)

    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=85)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def build_key(folder: str, file_name: str, owner_id: int | None = None) -> str:
    """Return a unique key such as ``videos/12/1717000000000-3f9a1c2b.mp4``."""
    if folder not in FOLDERS:
        raise ValueError(f"Unknown storage folder '{folder}'")
    extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else "bin"
    unique = f"{int(time.time() * 1000)}-{secrets.token_hex(8)}.{extension}"
    if owner_id is not None:
        return f"{folder}/{owner_id}/{unique}"
    return f"{folder}/{unique}"


def get_object_url(key: str) -> str:
    """Return the public URL for a stored object."""
    return f"{STORAGE_PUBLIC_URL.rstrip('/')}/{key}"


# ---------------------------------------------------------------------------
# CRUD operations
# ---------------------------------------------------------------------------

def put_object(key: str, data: bytes, content_type: str) -> StoredObject:
    """Upload *data* under *key* and return its key and public URL."""
    _get_s3().put_object(
        Bucket=STORAGE_BUCKET,
        Key=key,
        Body=data,
        ContentType=content_type,
    )
    return StoredObject(key=key, url=get_object_url(key))


def get_object_bytes(key: str) -> bytes:
    """Download an object and return its raw bytes."""
    response = _get_s3().get_object(Bucket=STORAGE_BUCKET, Key=key)
    return response["Body"].read()


def delete_object(key: str) -> None:
    _get_s3().delete_object(Bucket=STORAGE_BUCKET, Key=key)


def presign(key: str, ttl: int = 3600) -> str:
    """Return a time-limited download URL for a private object."""
    return _get_s3().generate_presigned_url(
        "get_object",
        Params={"Bucket": STORAGE_BUCKET, "Key": key},
        ExpiresIn=ttl,
    )
