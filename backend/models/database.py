"""
Flat-file JSON persistence: data directory layout, atomic reads and writes.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from loguru import logger

from config import settings


def data_dir() -> Path:
    return Path(settings.DATA_DIR)


def data_path(*parts: str) -> Path:
    return data_dir().joinpath(*parts)


def chats_dir() -> Path:
    return data_path("chats")


def upload_dir() -> Path:
    return Path(settings.UPLOAD_DIR)


def read_json(path: Path, default: Any = None) -> Any:
    """Load a JSON document, returning `default` when the file is missing or unreadable."""
    if default is None:
        default = {}
    if not path.exists():
        return default
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to read {path}: {e}")
        return default


def write_json(path: Path, data: Any) -> None:
    """Write the whole document to a temp file, then swap it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False, indent=2)
        os.replace(tmp_name, path)
    except Exception:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


async def init_storage():
    """Create the data and upload directories and seed empty stores."""
    for directory in (data_dir(), chats_dir(), upload_dir()):
        directory.mkdir(parents=True, exist_ok=True)
    for name in ("users.json", "verification_codes.json"):
        path = data_path(name)
        if not path.exists():
            write_json(path, {})
    logger.info(f"Storage ready at {data_dir().resolve()}")
