"""Conversation model and API request/response models."""

from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from chathub.models.capabilities import ModelCapabilities, UnknownCapabilities
from chathub.models.messages import Message, utc_now
from chathub.utils.ids import new_id

TITLE_MAX_CHARS = 40


def generate_title(first_message: str) -> str:
    """Derive a conversation title from the first user message."""
    cleaned = first_message.strip()
    if len(cleaned) <= TITLE_MAX_CHARS:
        return cleaned
    return f"{cleaned[:TITLE_MAX_CHARS]}..."


class Conversation(BaseModel):
    """An ordered chat with one model.

    Capabilities are resolved once when the model is selected and stored
    here; nothing downstream re-derives them from the model name.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    title: str = "New Conversation"
    model_id: str
    capabilities: ModelCapabilities = Field(default_factory=UnknownCapabilities)
    messages: tuple[Message, ...] = ()
    system_prompt: str | None = None
    tool_calling_enabled: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def with_message(self, message: Message) -> "Conversation":
        """Copy with ``message`` appended."""
        return self.model_copy(update={"messages": (*self.messages, message), "updated_at": utc_now()})

    def with_messages_before(self, anchor_id: str, new_messages: list[Message]) -> "Conversation":
        """Copy with ``new_messages`` inserted right before the message ``anchor_id``.

        Appends at the end when the anchor is missing.
        """
        messages = list(self.messages)
        index = next((i for i, m in enumerate(messages) if m.id == anchor_id), len(messages))
        messages[index:index] = new_messages
        return self.model_copy(update={"messages": tuple(messages), "updated_at": utc_now()})

    def with_updated_message(self, message_id: str, update: Callable[[Message], Message]) -> "Conversation":
        """Copy with the message ``message_id`` replaced by ``update(message)``."""
        messages = tuple(update(m) if m.id == message_id else m for m in self.messages)
        return self.model_copy(update={"messages": messages, "updated_at": utc_now()})

    def get_message(self, message_id: str) -> Message | None:
        """Find a message by id."""
        return next((m for m in self.messages if m.id == message_id), None)

    @property
    def last_message_preview(self) -> str:
        """Short preview of the last message for list views."""
        if not self.messages:
            return "No messages yet"
        text = self.messages[-1].content
        return f"{text[:50]}..." if len(text) > 50 else text

    def to_record(self) -> dict[str, Any]:
        """JSON-compatible record for the persistence layer."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Conversation":
        """Rebuild a conversation from a stored record."""
        return cls.model_validate(record)


class CreateConversationRequest(BaseModel):
    """Request model for creating a conversation."""

    model: str
    title: str | None = None
    system_prompt: str | None = None
    tool_calling_enabled: bool = True


class SendMessageRequest(BaseModel):
    """Request model for sending a user message."""

    text: str = Field(..., min_length=1)


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str


class UpdateConversationRequest(BaseModel):
    """Request model for changing conversation settings."""

    title: str | None = Field(default=None, min_length=1)
    tool_calling_enabled: bool | None = None


class ConversationSummary(BaseModel):
    """Conversation entry for list views."""

    id: str
    title: str
    model_id: str
    tool_calling_enabled: bool
    message_count: int
    preview: str
    updated_at: datetime

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationSummary":
        return cls(
            id=conversation.id,
            title=conversation.title,
            model_id=conversation.model_id,
            tool_calling_enabled=conversation.tool_calling_enabled,
            message_count=len(conversation.messages),
            preview=conversation.last_message_preview,
            updated_at=conversation.updated_at,
        )


class ModelInfo(BaseModel):
    """An installed model and what it can do."""

    name: str
    size: int | None = None
    modified_at: str | None = None
    capabilities: ModelCapabilities


class CancelResponse(BaseModel):
    """Response model for cancellation requests."""

    cancelled: bool
