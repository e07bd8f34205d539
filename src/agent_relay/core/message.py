"""Queue file models: incoming messages, outgoing responses, status records."""

import time
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def now_ms() -> int:
    return int(time.time() * 1000)


def _camel(name: str, serialized: Optional[str] = None):
    """Accept snake_case or camelCase on read, write the camelCase key."""
    key = serialized or to_camel(name)
    return dict(validation_alias=AliasChoices(name, key), serialization_alias=key)


class Message(BaseModel):
    """One unit of work in queue/incoming.

    Files use the camelCase schema channel clients write (``senderId``,
    ``messageId``, ``message`` ...). Snake_case keys are accepted on read.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    channel: str
    sender: str
    sender_id: Optional[str] = Field(default=None, **_camel("sender_id"))
    content: str = Field(**_camel("content", "message"))
    timestamp: int = Field(default_factory=now_ms)
    message_id: str = Field(**_camel("message_id"))
    agent: Optional[str] = None
    files: List[str] = Field(default_factory=list)

    # Agent-to-agent hop fields
    conversation_id: Optional[str] = Field(default=None, **_camel("conversation_id"))
    from_agent: Optional[str] = Field(default=None, **_camel("from_agent"))
    delegation_depth: int = Field(default=0, **_camel("delegation_depth"))
    correlation_id: Optional[str] = Field(default=None, **_camel("correlation_id"))

    @field_validator("delegation_depth", mode="before")
    @classmethod
    def coerce_depth(cls, v):
        return 0 if v is None else v

    @field_validator("files", mode="before")
    @classmethod
    def coerce_files(cls, v):
        return [] if v is None else v

    @property
    def is_internal(self) -> bool:
        """Agent-to-agent hops carry a conversation id and skip the security gate."""
        return bool(self.conversation_id)

    @property
    def chat_id(self) -> str:
        return self.sender_id or self.sender


class OutgoingResponse(BaseModel):
    """A completed reply in queue/outgoing, picked up by a plugin or legacy poller."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    channel: str
    sender: str
    sender_id: Optional[str] = Field(default=None, **_camel("sender_id"))
    content: str = Field(**_camel("content", "message"))
    original_content: str = Field(default="", **_camel("original_content", "originalMessage"))
    timestamp: int = Field(default_factory=now_ms)
    message_id: str = Field(**_camel("message_id"))
    agent: Optional[str] = None
    files: List[str] = Field(default_factory=list)

    @property
    def chat_id(self) -> str:
        return self.sender_id or self.sender

    def filename(self) -> str:
        """Heartbeat replies are looked up by message id alone."""
        if self.channel == "heartbeat":
            return f"{self.message_id}.json"
        return f"{self.channel}_{self.message_id}_{now_ms()}.json"


ProcessingStatusType = Literal[
    "processing",
    "invoking_agent",
    "agent_responding",
    "formatting_response",
]


class ProcessingStatus(BaseModel):
    """Write-once record of an in-flight agent invocation.

    Pollers compute elapsed time themselves as ``now - startedAt``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    message_id: str
    agent_id: str
    agent_name: str
    channel: str
    sender: str
    chat_id: str
    status: ProcessingStatusType = "invoking_agent"
    started_at: int = Field(default_factory=now_ms)
