"""Entry point for running the queue processor."""

import asyncio
import logging
import signal
import sys
from importlib.metadata import entry_points
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .core.config import RelayPaths, Settings, load_settings
from .queue.dispatcher import QueueDispatcher
from .utils.rich_logging import setup_rich_logging

logger = logging.getLogger(__name__)

CHANNEL_PLUGIN_GROUP = "agent_relay.channels"


def load_channel_plugins(dispatcher: QueueDispatcher, settings: Settings) -> int:
    """
    Register installed channel plugins that are enabled in settings.

    Plugins are advertised under the ``agent_relay.channels`` entry point
    group. Each entry point is a factory called with the channel's settings
    block and the attachment directory.
    """
    enabled = set(settings.channels.enabled)
    extra = settings.channels.model_extra or {}
    registered = 0

    for ep in entry_points(group=CHANNEL_PLUGIN_GROUP):
        if ep.name not in enabled:
            continue
        try:
            factory = ep.load()
            plugin = factory(extra.get(ep.name) or {}, dispatcher.paths.files)
            dispatcher.register_channel(plugin)
        except Exception as e:
            logger.error(f"[{ep.name}] Skipping channel plugin: {e}")
            continue
        registered += 1
    return registered


def main(home: Optional[str] = None, log_level: str = "INFO") -> None:
    """Run the dispatcher until SIGINT/SIGTERM."""
    load_dotenv()

    paths = RelayPaths(Path(home).expanduser()) if home else RelayPaths.from_env()
    paths.ensure()
    setup_rich_logging(log_dir=paths.logs, log_level=log_level)

    try:
        dispatcher = QueueDispatcher(paths, lambda: load_settings(paths.settings_file))
        load_channel_plugins(dispatcher, dispatcher.settings_provider())
    except Exception as e:
        logger.exception(f"Queue processor failed to start: {e}")
        sys.exit(1)

    async def _run() -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, dispatcher.stop)
        await dispatcher.run()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Queue processor interrupted, shutting down")


if __name__ == "__main__":
    main()
