"""Inference transport contract shared by remote and on-device backends."""

from collections.abc import AsyncIterator, Sequence
from typing import Protocol, runtime_checkable

from chathub.models.llm import ChatResponse, StreamChunk, ToolDefinition
from chathub.models.messages import Message


@runtime_checkable
class InferenceTransport(Protocol):
    """Channel to a model backend.

    Implementations are shared between conversations and must not assume
    exclusive access to their underlying connection pool.
    """

    async def chat(
        self,
        model_id: str,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        think: bool = False,
    ) -> ChatResponse:
        """Run one complete model turn."""
        ...

    def chat_stream(
        self,
        model_id: str,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream one model turn as incremental chunks."""
        ...
