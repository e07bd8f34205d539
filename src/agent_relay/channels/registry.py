"""Registry of channel plugins owned by one dispatcher."""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from .base import ChannelPlugin

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """Plugins keyed by channel id. Not a module-level global."""

    def __init__(self):
        self._plugins: Dict[str, ChannelPlugin] = {}

    def register(self, plugin: ChannelPlugin) -> None:
        if plugin.id in self._plugins:
            raise ValueError(f"Channel plugin '{plugin.id}' is already registered")
        self._plugins[plugin.id] = plugin
        caps = plugin.capabilities
        logger.info(
            f"[{plugin.id}] {plugin.meta.name or plugin.id} plugin registered "
            f"(threading={caps.threading}, reactions={caps.reactions}, "
            f"attachments={caps.file_attachments}, max_len={caps.max_message_length})"
        )

    def unregister(self, channel_id: str) -> bool:
        return self._plugins.pop(channel_id, None) is not None

    def get(self, channel_id: str) -> Optional[ChannelPlugin]:
        return self._plugins.get(channel_id)

    def has(self, channel_id: str) -> bool:
        return channel_id in self._plugins

    def all(self) -> List[ChannelPlugin]:
        return list(self._plugins.values())

    def ids(self) -> List[str]:
        return list(self._plugins.keys())

    async def connect_enabled(self, enabled: Optional[Iterable[str]] = None) -> None:
        """Connect registered plugins in ``enabled`` (all when None).

        One plugin failing to connect does not stop the others.
        """
        enabled_set = set(enabled) if enabled is not None else None
        plugins = [p for p in self.all() if enabled_set is None or p.id in enabled_set]
        results = await asyncio.gather(*(p.connect() for p in plugins), return_exceptions=True)
        for plugin, result in zip(plugins, results):
            if isinstance(result, Exception):
                logger.error(f"[{plugin.id}] connect failed: {result}")

    async def disconnect_all(self) -> None:
        results = await asyncio.gather(
            *(p.disconnect() for p in self.all()), return_exceptions=True
        )
        for plugin, result in zip(self.all(), results):
            if isinstance(result, Exception):
                logger.warning(f"[{plugin.id}] disconnect failed: {result}")
