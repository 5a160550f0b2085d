"""
Upload storage: type filtering, safe naming, listing and content helpers.
"""

import base64
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from loguru import logger

from config import settings
from models.database import upload_dir

IMAGE_TYPES = {
    "image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp",
    "image/bmp", "image/tiff", "image/svg+xml",
}
AUDIO_TYPES = {
    "audio/mpeg", "audio/mp3", "audio/wav", "audio/ogg", "audio/aac", "audio/flac",
    "audio/m4a", "audio/x-m4a", "audio/mp4", "audio/webm", "audio/wma",
    "audio/x-wav", "audio/x-mpeg",
}
VIDEO_TYPES = {
    "video/mp4", "video/avi", "video/quicktime", "video/x-msvideo", "video/x-ms-wmv",
    "video/webm", "video/ogg", "video/3gpp", "video/x-flv", "video/x-matroska",
}
DOCUMENT_TYPES = {
    "text/plain",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
ALLOWED_TYPES = IMAGE_TYPES | AUDIO_TYPES | VIDEO_TYPES | DOCUMENT_TYPES

# vision models reject vector images
VISION_IMAGE_TYPES = IMAGE_TYPES - {"image/svg+xml"}

_UNSAFE_CHARS = re.compile(r"[^\w.\-一-鿿]+")


class UploadRejected(ValueError):
    """Raised when an upload fails the type or size checks."""


def max_upload_bytes() -> int:
    return settings.MAX_UPLOAD_MB * 1024 * 1024


def is_allowed_type(content_type: Optional[str]) -> bool:
    return (content_type or "").lower() in ALLOWED_TYPES


def is_image(content_type: Optional[str]) -> bool:
    return (content_type or "").lower() in VISION_IMAGE_TYPES


def safe_filename(original: str) -> str:
    name = Path(original or "file").name
    stem, suffix = Path(name).stem, Path(name).suffix
    stem = _UNSAFE_CHARS.sub("_", stem).strip("._") or "file"
    suffix = _UNSAFE_CHARS.sub("", suffix)
    return f"{int(time.time() * 1000)}_{stem[:80]}{suffix}"


def resolve_upload_path(filename: str) -> Optional[Path]:
    """Map a stored filename to its path, refusing anything outside the upload dir."""
    root = upload_dir().resolve()
    candidate = (root / filename).resolve()
    if candidate.parent != root:
        return None
    return candidate


def file_metadata(filename: str, originalname: str, mimetype: Optional[str], size: int, uploaded: datetime) -> dict:
    return {
        "filename": filename,
        "originalname": originalname,
        "mimetype": mimetype,
        "size": size,
        "upload_time": uploaded.isoformat(),
        "url": f"/api/upload/file/{filename}",
    }


def check_upload(content_type: Optional[str], size: int) -> None:
    if not is_allowed_type(content_type):
        raise UploadRejected("不支持的文件类型，请上传图片、音频、视频、文档或PDF文件")
    if size > max_upload_bytes():
        raise UploadRejected(f"文件大小超过限制（最大{settings.MAX_UPLOAD_MB}MB）")


def save_upload(original_name: str, content_type: Optional[str], data: bytes) -> dict:
    check_upload(content_type, len(data))

    directory = upload_dir()
    directory.mkdir(parents=True, exist_ok=True)
    filename = safe_filename(original_name)
    (directory / filename).write_bytes(data)
    logger.info(f"Upload stored: {filename} ({len(data)} bytes)")
    return file_metadata(filename, original_name, content_type, len(data), datetime.now(timezone.utc))


def list_uploads() -> List[dict]:
    directory = upload_dir()
    if not directory.exists():
        return []

    files = []
    for path in directory.iterdir():
        if not path.is_file() or path.name.startswith("."):
            continue
        stat = path.stat()
        _, _, original = path.name.partition("_")
        files.append(file_metadata(
            path.name,
            original or path.name,
            None,
            stat.st_size,
            datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        ))
    files.sort(key=lambda f: f["upload_time"], reverse=True)
    return files


def delete_upload(filename: str) -> bool:
    path = resolve_upload_path(filename)
    if path is None or not path.is_file():
        return False
    path.unlink()
    logger.info(f"Upload deleted: {filename}")
    return True


def image_data_url(path: Path, content_type: str) -> str:
    encoded = base64.b64encode(path.read_bytes()).decode("utf-8")
    return f"data:{content_type};base64,{encoded}"


def read_text_excerpt(path: Path, limit: int = 2000) -> str:
    text = path.read_text(encoding="utf-8", errors="replace")
    if len(text) > limit:
        return text[:limit] + "\n……（内容过长，已截断）"
    return text
