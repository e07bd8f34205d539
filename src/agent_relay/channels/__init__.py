"""Chat surface plugin contract and registry."""

from .base import (
    ChannelCapabilities,
    ChannelMeta,
    ChannelPlugin,
    IncomingChannelMessage,
    SendMessageOptions,
)
from .registry import ChannelRegistry

__all__ = [
    "ChannelCapabilities",
    "ChannelMeta",
    "ChannelPlugin",
    "ChannelRegistry",
    "IncomingChannelMessage",
    "SendMessageOptions",
]
