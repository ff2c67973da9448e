"""Message data models.

Messages are immutable once created; updates (streamed text, status
changes) go through ``model_copy(update=...)`` and replace the old value.
"""

import base64
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from chathub.utils.ids import new_id

CANCELLED_TEXT = "[Generation cancelled]"

ErrorCode = Literal["transport", "max_iterations", "empty_response", "malformed_turn", "internal"]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class Role(StrEnum):
    """The role of a message sender."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class Attachment(BaseModel):
    """A binary blob attached to a message (image or text file)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    name: str
    mime_type: str
    data: bytes

    @field_validator("data", mode="before")
    @classmethod
    def decode_base64(cls, v: Any) -> Any:
        """Accept base64 text as stored in conversation records."""
        if isinstance(v, str):
            return base64.b64decode(v)
        return v

    @field_serializer("data")
    def encode_base64(self, data: bytes) -> str:
        """Store binary payloads as base64 so records stay JSON-compatible."""
        return base64.b64encode(data).decode("ascii")

    @property
    def size(self) -> int:
        """Payload size in bytes."""
        return len(self.data)

    @property
    def is_image(self) -> bool:
        """Whether this is an image attachment."""
        return self.mime_type.startswith("image/")

    @property
    def is_text_file(self) -> bool:
        """Whether this attachment is a text file."""
        return not self.is_image and (self.mime_type.startswith("text/") or self.mime_type == "application/json")

    @property
    def text_content(self) -> str | None:
        """Decoded text for text attachments, None otherwise."""
        if not self.is_text_file:
            return None
        try:
            return self.data.decode("utf-8")
        except UnicodeDecodeError:
            return None


class ToolCallRequest(BaseModel):
    """A model-issued request to invoke a tool."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    """One turn in a conversation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: Role
    content: str = ""
    tool_calls: tuple[ToolCallRequest, ...] = ()
    tool_call_id: str | None = None
    tool_name: str | None = None
    thinking: str | None = None
    status_message: str | None = None
    attachments: tuple[Attachment, ...] = ()
    references: tuple[str, ...] = ()
    created_at: datetime = Field(default_factory=utc_now)

    is_streaming: bool = False
    is_error: bool = False
    error_message: str | None = None
    error_code: ErrorCode | None = None

    @model_validator(mode="after")
    def check_tool_result_correlation(self) -> "Message":
        """A tool-role message must say which call it answers."""
        if self.role == Role.TOOL and not self.tool_call_id:
            raise ValueError("Tool messages require a tool_call_id")
        return self

    @classmethod
    def system(cls, content: str) -> "Message":
        """Create a system message."""
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str, attachments: tuple[Attachment, ...] = ()) -> "Message":
        """Create a user message."""
        return cls(role=Role.USER, content=content, attachments=attachments)

    @classmethod
    def assistant(cls, content: str = "", **kwargs: Any) -> "Message":
        """Create an assistant message."""
        return cls(role=Role.ASSISTANT, content=content, **kwargs)

    @classmethod
    def tool(cls, content: str, tool_call_id: str, tool_name: str | None = None) -> "Message":
        """Create a tool result message."""
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id, tool_name=tool_name)

    @property
    def has_tool_calls(self) -> bool:
        """Whether this message requests tool invocations."""
        return bool(self.tool_calls)

    @property
    def has_images(self) -> bool:
        """Whether this message has image attachments."""
        return any(a.is_image for a in self.attachments)

    @property
    def images(self) -> list[Attachment]:
        """All image attachments."""
        return [a for a in self.attachments if a.is_image]

    @property
    def is_cancelled(self) -> bool:
        """Whether this is a placeholder left behind by a cancelled generation."""
        return self.role == Role.ASSISTANT and self.content == CANCELLED_TEXT

    def as_error(self, error_message: str, error_code: ErrorCode) -> "Message":
        """Copy of this message turned into a terminal error bubble."""
        return self.model_copy(
            update={
                "is_error": True,
                "is_streaming": False,
                "status_message": None,
                "error_message": error_message,
                "error_code": error_code,
            }
        )
