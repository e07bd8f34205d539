"""Tests for processor startup: channel plugin discovery."""

from unittest.mock import MagicMock, patch

from agent_relay.queue.dispatcher import QueueDispatcher
from agent_relay.run_processor import CHANNEL_PLUGIN_GROUP, load_channel_plugins
from tests.unit.relay_fixtures import RecordingPlugin, make_settings


def _entry_point(name, factory):
    ep = MagicMock()
    ep.name = name
    ep.load.return_value = factory
    return ep


class TestLoadChannelPlugins:
    def test_registers_enabled_plugins(self, paths, workspace):
        settings = make_settings(
            workspace, channels={"enabled": ["discord"], "discord": {"bot_token": "t"}}
        )
        dispatcher = QueueDispatcher(paths, lambda: settings)
        seen = {}

        def discord_factory(config, files_dir):
            seen["args"] = (config, files_dir)
            return RecordingPlugin("discord")

        eps = [
            _entry_point("discord", discord_factory),
            _entry_point("telegram", lambda config, files_dir: RecordingPlugin("telegram")),
        ]
        with patch("agent_relay.run_processor.entry_points", return_value=eps) as mock_eps:
            count = load_channel_plugins(dispatcher, settings)

        mock_eps.assert_called_once_with(group=CHANNEL_PLUGIN_GROUP)
        assert count == 1
        assert dispatcher.registry.ids() == ["discord"]
        assert seen["args"] == ({"bot_token": "t"}, paths.files)

    def test_broken_plugin_skipped(self, paths, workspace, caplog):
        settings = make_settings(workspace, channels={"enabled": ["discord", "telegram"]})
        dispatcher = QueueDispatcher(paths, lambda: settings)

        def broken(config, files_dir):
            raise RuntimeError("missing token")

        eps = [
            _entry_point("discord", broken),
            _entry_point("telegram", lambda config, files_dir: RecordingPlugin("telegram")),
        ]
        with caplog.at_level("ERROR", logger="agent_relay"):
            with patch("agent_relay.run_processor.entry_points", return_value=eps):
                count = load_channel_plugins(dispatcher, settings)

        assert count == 1
        assert dispatcher.registry.ids() == ["telegram"]
        assert "[discord] Skipping channel plugin: missing token" in caplog.text
