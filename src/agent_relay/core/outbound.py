"""Post-processing of agent output before it is written to queue/outgoing."""

import logging
import re
from pathlib import Path
from typing import Iterable, List, MutableSet, Optional, Tuple

from ..utils.atomic_io import write_text_atomic
from .message import now_ms
from .routing import MENTION_TAG_RE

logger = logging.getLogger(__name__)

SEND_FILE_TAG_RE = re.compile(r"\[send_file:\s*([^\]]+)\]")

LONG_RESPONSE_NOTICE = "\n\n_(Full response attached as file)_"


def collect_files(response: str, files_dir: Path, file_set: MutableSet[str]) -> None:
    """Add every existing ``[send_file: path]`` target under ``files_dir`` to ``file_set``.

    Paths that resolve outside ``files_dir`` are refused so an agent cannot
    exfiltrate arbitrary files from the host.
    """
    allowed_base = files_dir.resolve()
    for match in SEND_FILE_TAG_RE.finditer(response):
        raw_path = match.group(1).strip()
        resolved = Path(raw_path).expanduser().resolve()
        if resolved != allowed_base and allowed_base not in resolved.parents:
            logger.warning(f"[SEC] send_file blocked, path outside files dir: {raw_path}")
            continue
        if resolved.exists():
            file_set.add(str(resolved))


def strip_send_file_tags(text: str) -> str:
    return SEND_FILE_TAG_RE.sub("", text).strip()


def strip_mention_tags(text: str) -> str:
    return MENTION_TAG_RE.sub("", text).strip()


def handle_long_response(
    response: str,
    existing_files: List[str],
    files_dir: Path,
    threshold: int,
) -> Tuple[str, List[str]]:
    """Attach over-long responses as a markdown file and send a preview."""
    if len(response) <= threshold:
        return response, existing_files

    file_path = files_dir / f"response_{now_ms()}.md"
    write_text_atomic(file_path, response)
    logger.info(f"Long response ({len(response)} chars) saved to {file_path.name}")

    preview = response[:threshold] + LONG_RESPONSE_NOTICE
    return preview, existing_files + [str(file_path)]


def finalize_response(
    text: str,
    files_dir: Path,
    threshold: int,
    known_files: Optional[Iterable[str]] = None,
    strip_mentions: bool = True,
) -> Tuple[str, List[str]]:
    """Collect attachments, strip tags and apply long-response handling.

    Returns the user-facing text and the list of attached file paths.
    """
    final_text = text.strip()
    outbound = set(known_files or ())
    collect_files(final_text, files_dir, outbound)
    attachments = sorted(outbound)

    if attachments:
        final_text = strip_send_file_tags(final_text)
    if strip_mentions:
        final_text = strip_mention_tags(final_text)

    return handle_long_response(final_text, attachments, files_dir, threshold)
