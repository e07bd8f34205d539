"""Append-only structured event stream (events/events.jsonl)."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

EVENTS_FILENAME = "events.jsonl"


class RelayEvent(BaseModel):
    """One observability event."""
    type: str  # "processor_start", "message_received", "chain_handoff", ...
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = Field(default_factory=dict)


class EventStream:
    """Best-effort JSONL event log. Emission never raises."""

    def __init__(self, events_dir: Path):
        self.events_dir = Path(events_dir)
        self.stream_file = self.events_dir / EVENTS_FILENAME

    def emit(self, event_type: str, **data: Any) -> None:
        event = RelayEvent(type=event_type, data=data)
        try:
            self.events_dir.mkdir(parents=True, exist_ok=True)
            with open(self.stream_file, "a", encoding="utf-8") as f:
                f.write(event.model_dump_json() + "\n")
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to emit {event_type} event: {e}")

    def read_recent(self, limit: int = 10) -> List[RelayEvent]:
        """Most recent events, newest first. Unparsable lines are skipped."""
        if not self.stream_file.exists():
            return []

        events = []
        for line in self.stream_file.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                events.append(RelayEvent(**json.loads(line)))
            except (json.JSONDecodeError, ValidationError, TypeError) as e:
                logger.debug(f"Skipping malformed event line: {e}")
        return list(reversed(events[-limit:]))
