"""Local file storage for note documents, thumbnails and past papers.

Files live under UPLOAD_FOLDER using bucket-style keys such as
``notes/12/1718000000000_lecture_1.pdf``. Keys are stored in the database;
absolute paths never leave this module.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from flask import current_app
from werkzeug.datastructures import FileStorage

from errors import ValidationError
from helpers import sanitize_filename

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
IMAGE_MIMES = {"image/png", "image/jpeg", "image/webp", "image/gif"}

# Magic byte signatures for file header validation
_MAGIC_BYTES = {
    "application/pdf": (b"%PDF",),
    "image/png": (b"\x89PNG",),
    "image/jpeg": (b"\xff\xd8\xff",),
    "image/webp": (b"RIFF",),
    "image/gif": (b"GIF87a", b"GIF89a"),
}


def _root() -> Path:
    root = Path(current_app.config["UPLOAD_FOLDER"])
    root.mkdir(parents=True, exist_ok=True)
    return root


def _file_size(file: FileStorage) -> int:
    stream = file.stream
    pos = stream.tell()
    stream.seek(0, 2)
    size = stream.tell()
    stream.seek(pos)
    return size


def _header_matches(file: FileStorage, mimetype: str) -> bool:
    signatures = _MAGIC_BYTES.get(mimetype)
    if not signatures:
        return False
    longest = max(len(s) for s in signatures)
    header = file.stream.read(longest)
    file.stream.seek(0)
    return any(header.startswith(s) for s in signatures)


def validate_pdf(file: FileStorage | None, label: str = "File") -> int:
    """Check a PDF upload and return its size in bytes."""
    if file is None or not file.filename:
        raise ValidationError(f"{label} is required for PDF content")
    if file.mimetype != PDF_MIME:
        raise ValidationError("Only PDF files are allowed")
    size = _file_size(file)
    max_size = current_app.config.get("MAX_NOTE_FILE_SIZE", 10 * 1024 * 1024)
    if size > max_size:
        raise ValidationError(f"File size must be less than {max_size // (1024 * 1024)}MB")
    if not _header_matches(file, PDF_MIME):
        raise ValidationError("File content does not match its type")
    return size


def validate_image(file: FileStorage) -> None:
    if file.mimetype not in IMAGE_MIMES or not _header_matches(file, file.mimetype):
        raise ValidationError("Thumbnail must be a PNG, JPEG, WEBP or GIF image")


def build_key(bucket: str, user_id: int, filename: str, subdir: str = "") -> str:
    stamp = int(time.time() * 1000)
    parts = [bucket, str(user_id)]
    if subdir:
        parts.append(subdir)
    parts.append(f"{stamp}_{sanitize_filename(filename)}")
    return "/".join(parts)


def save(file: FileStorage, key: str) -> str:
    path = _root() / key
    path.parent.mkdir(parents=True, exist_ok=True)
    file.stream.seek(0)
    file.save(str(path))
    logger.info("Stored upload %s", key)
    return key


def resolve(key: str) -> Path | None:
    """Absolute path for a stored key, or None if missing or outside the root."""
    if not key:
        return None
    root = _root().resolve()
    path = (root / key).resolve()
    if root not in path.parents or not path.is_file():
        return None
    return path


def delete(*keys: str) -> None:
    for key in keys:
        path = resolve(key)
        if path is None:
            continue
        try:
            path.unlink()
        except OSError:
            logger.warning("Could not remove stored file %s", key, exc_info=True)


def delete_user_files(user_id: int) -> None:
    """Remove every object stored under a user's prefix in all buckets."""
    root = _root()
    for bucket in ("notes", "papers"):
        user_dir = root / bucket / str(user_id)
        if not user_dir.is_dir():
            continue
        for path in sorted(user_dir.rglob("*"), reverse=True):
            try:
                path.unlink() if path.is_file() else path.rmdir()
            except OSError:
                logger.warning("Could not remove %s", path, exc_info=True)
        try:
            user_dir.rmdir()
        except OSError:
            logger.warning("Could not remove %s", user_dir, exc_info=True)
