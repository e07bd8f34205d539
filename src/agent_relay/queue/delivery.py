"""Deliver completed responses in queue/outgoing through channel plugins."""

import logging
from typing import List

from ..channels.base import SendMessageOptions
from ..channels.registry import ChannelRegistry
from .file_queue import FileQueue

logger = logging.getLogger(__name__)


class OutgoingDelivery:
    """
    Sends outgoing files whose channel has a registered plugin.

    A file is deleted only after ``send_message`` returns, so a failed send is
    retried on the next pass. Files for channels without a plugin are left
    for the legacy pollers.
    """

    def __init__(self, queue: FileQueue, registry: ChannelRegistry):
        self.queue = queue
        self.registry = registry
        self._delivering = False
        self._shutdown = False

    def shutdown(self) -> None:
        self._shutdown = True

    async def deliver_once(self) -> List[str]:
        """One pass over queue/outgoing. Returns the delivered file names."""
        if self._shutdown or self._delivering:
            return []

        self._delivering = True
        delivered = []
        try:
            for path in self.queue.list_outgoing():
                if self._shutdown:
                    break
                try:
                    response = self.queue.load_response(path)
                except FileNotFoundError:
                    continue
                except (OSError, ValueError) as e:
                    logger.debug(f"Skipping unreadable outgoing file {path.name}: {e}")
                    continue

                plugin = self.registry.get(response.channel)
                if plugin is None:
                    continue

                chat_id = response.chat_id
                try:
                    await plugin.send_message(
                        chat_id, response.content, SendMessageOptions(files=list(response.files))
                    )
                except Exception as e:
                    logger.error(f"[plugin:{response.channel}] send_message failed: {e}")
                    continue

                path.unlink(missing_ok=True)
                delivered.append(path.name)
                logger.info(
                    f"[plugin:{response.channel}] delivered to {chat_id} ({len(response.content)} chars)"
                )
        except OSError as e:
            logger.error(f"Outgoing delivery error: {e}")
        finally:
            self._delivering = False
        return delivered
