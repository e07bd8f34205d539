"""Tests for in-flight status records."""

import json

from agent_relay.core.message import ProcessingStatus
from agent_relay.core.processing_status import (
    StatusStore,
    format_elapsed,
    format_status_message,
)


def _status(message_id="m1", started_at=1_000_000):
    return ProcessingStatus(
        message_id=message_id,
        agent_id="coder",
        agent_name="Coder",
        channel="telegram",
        sender="alice",
        chat_id="chat-42",
        started_at=started_at,
    )


class TestStatusStore:
    def test_write_read_clear(self, tmp_path):
        store = StatusStore(tmp_path)
        store.write(_status())

        assert [s.message_id for s in store.read_all(now=1_000_500)] == ["m1"]

        store.clear("m1")

        assert store.read_all(now=1_000_500) == []

    def test_written_camel_case(self, tmp_path):
        StatusStore(tmp_path).write(_status())

        data = json.loads((tmp_path / "m1.json").read_text())

        assert data["messageId"] == "m1"
        assert data["agentId"] == "coder"
        assert data["agentName"] == "Coder"
        assert data["chatId"] == "chat-42"
        assert data["startedAt"] == 1_000_000

    def test_clear_missing_is_noop(self, tmp_path):
        StatusStore(tmp_path).clear("never-written")

    def test_stale_entries_reaped(self, tmp_path):
        store = StatusStore(tmp_path, max_age_seconds=60)
        store.write(_status("old", started_at=0))
        store.write(_status("new", started_at=100_000))

        live = store.read_all(now=120_000)

        assert [s.message_id for s in live] == ["new"]
        assert not (tmp_path / "old.json").exists()

    def test_corrupt_files_ignored(self, tmp_path):
        (tmp_path / "junk.json").write_text("not json")

        assert StatusStore(tmp_path).read_all() == []

    def test_missing_dir(self, tmp_path):
        assert StatusStore(tmp_path / "absent").read_all() == []


class TestFormatting:
    def test_elapsed(self):
        assert format_elapsed(42) == "42s"
        assert format_elapsed(125) == "2m 5s"

    def test_status_message(self):
        text = format_status_message(_status(started_at=0), now=75_000)

        assert text == "Still working... @coder (Coder) has been processing for 1m 15s."
