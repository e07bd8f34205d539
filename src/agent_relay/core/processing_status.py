"""Processing status files for in-flight agent invocations.

The dispatcher writes ``queue/status/<messageId>.json`` once before invoking
an agent and deletes it afterwards. Channel clients poll the directory and
compute elapsed time themselves from ``startedAt``; the file is never
rewritten, so any elapsed value stored in it would be stale.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from ..utils.atomic_io import write_json_atomic
from .message import ProcessingStatus, now_ms

logger = logging.getLogger(__name__)

DEFAULT_STATUS_MAX_AGE_SECONDS = 20 * 60


class StatusStore:
    """Write-once status records under queue/status/."""

    def __init__(self, status_dir: Path, max_age_seconds: int = DEFAULT_STATUS_MAX_AGE_SECONDS):
        self.status_dir = Path(status_dir)
        self.max_age_ms = max_age_seconds * 1000

    def _path(self, message_id: str) -> Path:
        return self.status_dir / f"{message_id}.json"

    def write(self, status: ProcessingStatus) -> None:
        write_json_atomic(self._path(status.message_id), status)

    def clear(self, message_id: str) -> None:
        """Safe to call when no status was written."""
        try:
            self._path(message_id).unlink(missing_ok=True)
        except OSError as e:
            logger.debug(f"Could not clear status for {message_id}: {e}")

    def read_all(self, now: Optional[int] = None) -> List[ProcessingStatus]:
        """Live statuses. Entries older than the max age are deleted as orphans."""
        if not self.status_dir.exists():
            return []

        now = now if now is not None else now_ms()
        results = []
        for status_file in sorted(self.status_dir.glob("*.json")):
            try:
                status = ProcessingStatus(**json.loads(status_file.read_text()))
            except (OSError, json.JSONDecodeError, ValidationError, TypeError):
                continue

            if now - status.started_at > self.max_age_ms:
                logger.info(f"Reaping orphaned status file {status_file.name}")
                status_file.unlink(missing_ok=True)
                continue
            results.append(status)
        return results


def format_elapsed(seconds: int) -> str:
    if seconds >= 60:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds}s"


def elapsed_seconds(status: ProcessingStatus, now: Optional[int] = None) -> int:
    now = now if now is not None else now_ms()
    return max(0, (now - status.started_at) // 1000)


def format_status_message(status: ProcessingStatus, now: Optional[int] = None) -> str:
    """Progress line for the waiting user.

    ``agent-relay status --messages`` prints it; channel clients polling the
    status directory send the same text to the chat.
    """
    return (
        f"Still working... @{status.agent_id} ({status.agent_name}) "
        f"has been processing for {format_elapsed(elapsed_seconds(status, now))}."
    )
