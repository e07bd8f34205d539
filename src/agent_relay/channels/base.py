"""Chat surface plugin contract.

Plugins are thin bindings over a messaging API. The dispatcher only needs
them to connect, deliver replies, and hand incoming messages over.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

MessageHandler = Callable[["IncomingChannelMessage"], None]
ReadyHandler = Callable[[], None]
ErrorHandler = Callable[[Exception], None]


class ChannelMeta(BaseModel):
    name: str
    icon: str = ""
    version: str = "0.0.0"


class ChannelCapabilities(BaseModel):
    """Declared features. Logged at registration; not acted on otherwise."""
    threading: bool = False
    reactions: bool = False
    file_attachments: bool = False
    max_message_length: int = 4000


class IncomingChannelMessage(BaseModel):
    channel_id: str
    chat_id: str
    sender_id: str = ""
    sender_name: str = ""
    content: str = ""
    message_id: str = ""
    files: List[str] = Field(default_factory=list)
    timestamp: Optional[int] = None


@dataclass
class SendMessageOptions:
    reply_to_message_id: Optional[str] = None
    files: List[str] = field(default_factory=list)


class ChannelPlugin(ABC):
    """Base class for chat surface plugins.

    Subclasses set ``id``, ``meta`` and ``capabilities`` and implement the
    three async operations. Handler registration is provided here.
    """

    id: str = ""
    meta: ChannelMeta = ChannelMeta(name="")
    capabilities: ChannelCapabilities = ChannelCapabilities()

    def __init__(self):
        self._message_handlers: List[MessageHandler] = []
        self._ready_handlers: List[ReadyHandler] = []
        self._error_handlers: List[ErrorHandler] = []

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the platform and start receiving messages."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def send_message(
        self, chat_id: str, content: str, opts: Optional[SendMessageOptions] = None
    ) -> None:
        """Deliver ``content`` to ``chat_id``. Raise on failure so the reply is retried."""
        pass

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    def on_ready(self, handler: ReadyHandler) -> None:
        self._ready_handlers.append(handler)

    def on_error(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)

    def emit_message(self, message: IncomingChannelMessage) -> None:
        for handler in self._message_handlers:
            handler(message)

    def emit_ready(self) -> None:
        for handler in self._ready_handlers:
            handler()

    def emit_error(self, error: Exception) -> None:
        for handler in self._error_handlers:
            handler(error)
