"""Crash-safe writes for queue, status and settings files."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)


def _temp_path(file_path: Path) -> Path:
    # Scanners glob *.json, so the temp name must not end in .json
    return file_path.with_name(f"{file_path.name}.tmp.{os.getpid()}")


def write_text_atomic(file_path: Path, content: str) -> None:
    """Write via a sibling temp file and rename it into place.

    Readers see either the previous file or the complete new one, never a
    partial write.

    Raises:
        OSError: If the write or rename fails. The temp file is removed.
    """
    file_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_file = _temp_path(file_path)
    try:
        tmp_file.write_text(content, encoding="utf-8")
        os.replace(tmp_file, file_path)
    except OSError as e:
        logger.error(f"Failed to write {file_path}: {e}")
        raise
    finally:
        if tmp_file.exists():
            try:
                tmp_file.unlink()
            except OSError:
                pass


def write_json_atomic(file_path: Path, payload: Union[BaseModel, Any], indent: int = 2) -> None:
    """Serialize a pydantic model (or plain JSON data) and write it atomically."""
    if isinstance(payload, BaseModel):
        content = payload.model_dump_json(indent=indent, by_alias=True)
    else:
        content = json.dumps(payload, indent=indent)
    write_text_atomic(file_path, content)
