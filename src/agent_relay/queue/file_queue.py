"""Directory-backed message queue: incoming/ -> processing/ -> outgoing/.

Ownership of a message is transferred by renaming its file between
directories. The incoming -> processing rename is the only step that must
be atomic; it is what makes crash recovery possible.
"""

import json
import logging
import random
import string
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from ..core.config import RelayPaths
from ..core.message import Message, OutgoingResponse, now_ms
from ..utils.atomic_io import write_json_atomic

logger = logging.getLogger(__name__)


def _random_suffix(length: int = 4) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


class FileQueue:
    """
    File-based message queue using JSON files.

    - Atomic writes using .tmp files then rename
    - Oldest-first listing by modification time
    - Rename-based ownership (incoming -> processing)
    - Startup recovery of files orphaned in processing/
    """

    def __init__(self, paths: RelayPaths):
        self.paths = paths
        self.incoming_dir = paths.incoming
        self.processing_dir = paths.processing
        self.outgoing_dir = paths.outgoing
        self._ensure_dirs()

    def _ensure_dirs(self) -> None:
        for directory in (self.incoming_dir, self.processing_dir, self.outgoing_dir):
            directory.mkdir(parents=True, exist_ok=True)

    # -- incoming ----------------------------------------------------------

    def push(self, message: Message, filename: Optional[str] = None) -> Path:
        """Write a message into incoming/. Returns the file path."""
        filename = filename or f"{message.channel}_{message.timestamp}_{message.message_id}.json"
        path = self.incoming_dir / filename
        write_json_atomic(path, message)
        return path

    def push_internal(self, message: Message) -> Path:
        """Enqueue an agent-to-agent hop for ``message.agent``."""
        filename = (
            f"internal_{message.conversation_id}_{message.agent}_"
            f"{now_ms()}_{_random_suffix()}.json"
        )
        return self.push(message, filename)

    def push_from_channel(
        self,
        channel: str,
        chat_id: str,
        content: str,
        sender_name: str = "",
        sender_id: str = "",
        timestamp: Optional[int] = None,
    ) -> Optional[Path]:
        """Queue a message from a channel plugin.

        The chat id is stored as ``sender_id`` so the reply can be delivered
        to the same thread. Messages without a chat id are dropped.
        """
        chat_id = (chat_id or "").strip()
        if not chat_id:
            logger.warning(f"[plugin:{channel}] dropped message, missing chat id")
            return None

        message_id = str(uuid.uuid4())
        message = Message(
            channel=channel,
            sender=(sender_name or sender_id or "").strip() or "unknown",
            sender_id=chat_id,
            content=content or "",
            timestamp=timestamp or now_ms(),
            message_id=message_id,
        )
        path = self.push(message, f"{channel}_{message.timestamp}_{message_id}.json")
        logger.debug(f"[plugin:{channel}] queued message from {sender_id or chat_id}")
        return path

    def list_incoming(self) -> List[Path]:
        """Incoming message files, oldest modification time first."""
        entries = []
        for path in self.incoming_dir.glob("*.json"):
            try:
                entries.append((path.stat().st_mtime, path.name, path))
            except FileNotFoundError:
                # Claimed between glob and stat
                continue
        entries.sort()
        return [path for _, _, path in entries]

    @staticmethod
    def peek(path: Path) -> Optional[Message]:
        """Read a message without claiming it. None if unreadable or malformed."""
        try:
            return Message(**json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, TypeError):
            return None

    # -- processing --------------------------------------------------------

    def claim(self, incoming_path: Path) -> Optional[Path]:
        """Atomically move a file from incoming/ to processing/.

        Returns the processing path, or None if the file is already gone.
        """
        processing_path = self.processing_dir / incoming_path.name
        try:
            incoming_path.rename(processing_path)
        except FileNotFoundError:
            return None
        return processing_path

    @staticmethod
    def load_message(processing_path: Path) -> Message:
        """Parse a claimed file.

        Raises:
            json.JSONDecodeError, UnicodeDecodeError, pydantic.ValidationError:
                when the file is malformed.
        """
        data = json.loads(processing_path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise json.JSONDecodeError("message file must contain a JSON object", "", 0)
        return Message(**data)

    def rewrite(self, processing_path: Path, message: Message) -> None:
        """Persist an in-place content change (security gate) to the claimed file."""
        write_json_atomic(processing_path, message)

    def complete(self, processing_path: Path) -> None:
        processing_path.unlink(missing_ok=True)

    def discard(self, processing_path: Path, reason: str = "") -> None:
        """Delete a malformed file; it would fail again on every retry."""
        logger.warning(f"Discarding corrupt message file: {processing_path.name} {reason}".rstrip())
        try:
            processing_path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to discard {processing_path.name}: {e}")

    def release(self, processing_path: Path) -> None:
        """Return a claimed file to incoming/ for a retry on a later tick."""
        if not processing_path.exists():
            return
        try:
            processing_path.rename(self.incoming_dir / processing_path.name)
        except OSError as e:
            logger.error(f"Failed to move {processing_path.name} back to incoming: {e}")

    def recover_orphans(self) -> List[str]:
        """Move every file left in processing/ back to incoming/.

        Call before polling starts; anything in processing/ at that point
        belonged to a process that died mid-message.
        """
        recovered = []
        for path in sorted(self.processing_dir.glob("*.json")):
            try:
                path.rename(self.incoming_dir / path.name)
            except OSError as e:
                logger.error(f"Failed to recover orphaned file {path.name}: {e}")
                continue
            recovered.append(path.name)
            logger.info(f"Recovered orphaned file: {path.name}")
        return recovered

    # -- outgoing ----------------------------------------------------------

    def push_response(self, response: OutgoingResponse) -> Path:
        path = self.outgoing_dir / response.filename()
        write_json_atomic(path, response)
        return path

    def list_outgoing(self) -> List[Path]:
        return sorted(self.outgoing_dir.glob("*.json"))

    @staticmethod
    def load_response(path: Path) -> OutgoingResponse:
        return OutgoingResponse(**json.loads(path.read_text(encoding="utf-8")))

    def get_queue_stats(self) -> Dict[str, int]:
        return {
            "incoming": len(list(self.incoming_dir.glob("*.json"))),
            "processing": len(list(self.processing_dir.glob("*.json"))),
            "outgoing": len(list(self.outgoing_dir.glob("*.json"))),
        }
