"""
Local file storage for uploads plus signed, time-limited download links.

Files live under UPLOAD_DIR keyed as ``<folder>/<timestamp>-<random>-<name>``.
Public media (images/avatars) is served directly; everything else is only
reachable through a URL whose token was signed with itsdangerous.
"""

import logging
import re
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import aiofiles
from fastapi import UploadFile
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

import config

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 500 * 1024 * 1024
MAX_IMAGE_SIZE = 10 * 1024 * 1024
MAX_FILES = 10
CHUNK_SIZE = 1024 * 1024

PUBLIC_FOLDERS = ("images", "avatars")

ALLOWED_FILE_TYPES = {
    # Documents
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    # Archives
    "application/zip",
    "application/x-rar-compressed",
    "application/x-7z-compressed",
    "application/x-tar",
    "application/gzip",
    # Images
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/svg+xml",
    # Design files
    "application/x-figma",
    "application/sketch",
    "application/photoshop",
    # Code
    "text/plain",
    "text/html",
    "text/css",
    "text/javascript",
    "application/json",
    # Fonts
    "font/ttf",
    "font/otf",
    "font/woff",
    "font/woff2",
    # Video / audio
    "video/mp4",
    "video/webm",
    "audio/mpeg",
    "audio/wav",
}

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}

_DOWNLOAD_SALT = "marketplace.download.v1"


class StorageError(Exception):
    """A file was rejected or could not be stored."""


@dataclass
class StoredFile:
    key: str
    url: str
    name: str
    size: int
    type: str

    def as_dict(self) -> dict:
        return {"key": self.key, "url": self.url, "name": self.name, "size": self.size, "type": self.type}


def upload_root() -> Path:
    return Path(config.UPLOAD_DIR).resolve()


def sanitize_folder(folder: Optional[str], default: str) -> str:
    folder = re.sub(r"[^a-zA-Z0-9_-]", "", folder or "")
    return folder or default


def generate_file_key(folder: str, filename: str) -> str:
    sanitized = re.sub(r"[^a-zA-Z0-9.-]", "_", filename or "file")
    return f"{folder}/{int(time.time() * 1000)}-{secrets.token_hex(8)}-{sanitized}"


def resolve_key(key: str) -> Path:
    """Map a key to a path inside the upload root; rejects traversal."""
    root = upload_root()
    path = (root / key).resolve()
    if root != path and root not in path.parents:
        raise StorageError("Invalid file key")
    return path


def is_public_key(key: str) -> bool:
    return key.split("/", 1)[0] in PUBLIC_FOLDERS


def public_url(key: str) -> str:
    return f"{config.API_BASE_URL}/api/upload/public/{key}"


def validate_file_type(content_type: Optional[str], is_image: bool = False) -> bool:
    allowed = ALLOWED_IMAGE_TYPES if is_image else ALLOWED_FILE_TYPES
    return content_type in allowed


async def save_upload(upload_file: UploadFile, folder: str, is_image: bool = False) -> StoredFile:
    content_type = upload_file.content_type
    if not validate_file_type(content_type, is_image):
        raise StorageError(f"Invalid {'image' if is_image else 'file'} type: {content_type}")

    max_size = MAX_IMAGE_SIZE if is_image else MAX_FILE_SIZE
    key = generate_file_key(folder, upload_file.filename)
    path = resolve_key(key)
    path.parent.mkdir(parents=True, exist_ok=True)

    size = 0
    try:
        async with aiofiles.open(path, "wb") as out_file:
            while True:
                chunk = await upload_file.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_size:
                    raise StorageError(f"File size exceeds limit of {max_size // (1024 * 1024)}MB")
                await out_file.write(chunk)
    except StorageError:
        path.unlink(missing_ok=True)
        raise

    logger.info("Stored upload %s (%s bytes)", key, size)
    return StoredFile(key=key, url=public_url(key), name=upload_file.filename or "file", size=size, type=content_type)


def delete_file(key: str) -> bool:
    path = resolve_key(key)
    if not path.is_file():
        return False
    path.unlink()
    logger.info("Deleted upload %s", key)
    return True


def file_metadata(key: str) -> Optional[dict]:
    path = resolve_key(key)
    if not path.is_file():
        return None
    stat = path.stat()
    return {
        "size": stat.st_size,
        "last_modified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
    }


# Signed download links


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=config.JWT_SECRET, salt=_DOWNLOAD_SALT)


def sign_download(key: str, expires_in: Optional[int] = None) -> dict:
    expires_in = expires_in or config.DOWNLOAD_URL_EXPIRES
    token = _serializer().dumps({"k": key, "e": expires_in})
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    return {
        "download_url": f"{config.API_BASE_URL}/api/upload/signed/{token}",
        "expires_in": expires_in,
        "expires_at": expires_at.isoformat(),
    }


def verify_download(token: str) -> Optional[str]:
    """Return the signed key, or None when the token is tampered or expired."""
    s = _serializer()
    try:
        # the link's own lifetime is embedded, so check the signature first then the age
        data = s.loads(token)
        key = (data or {}).get("k")
        expires_in = int((data or {}).get("e") or config.DOWNLOAD_URL_EXPIRES)
        s.loads(token, max_age=expires_in)
    except SignatureExpired:
        logger.info("Expired download link")
        return None
    except (BadSignature, TypeError, ValueError):
        return None
    return key or None
