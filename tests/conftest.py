"""Shared fixtures and fakes for the test suite."""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

import pytest
from pydantic import BaseModel, ConfigDict

from chathub.models.llm import ChatResponse, StreamChunk, ToolDefinition
from chathub.models.messages import Message, ToolCallRequest
from chathub.tools.base import Tool
from chathub.tools.registry import ToolsRegistry


@dataclass
class RecordedCall:
    """One request seen by the fake transport."""

    model_id: str
    messages: tuple[Message, ...]
    tools: list[ToolDefinition] | None
    think: bool = False


Turn = Message | Exception | Callable[[Sequence[Message]], Message]


class ScriptedTransport:
    """Inference transport that replays scripted model turns.

    The last scripted turn repeats once the script is exhausted. Every
    request is recorded for assertions. With ``hold_from_call`` set, that
    call and later ones block until ``release`` is set. ``max_in_flight``
    counts how many requests were ever waiting at once.
    """

    def __init__(self, turns: list[Turn] | None = None, stream_pieces: list[str] | None = None):
        self.turns = list(turns or [Message.assistant("Hello!")])
        self.stream_pieces = stream_pieces if stream_pieces is not None else ["Hel", "lo", "!"]
        self.calls: list[RecordedCall] = []
        self.stream_calls: list[RecordedCall] = []
        self.hold_from_call: int | None = None
        self.release = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0

    def _next_turn(self) -> Turn:
        return self.turns.pop(0) if len(self.turns) > 1 else self.turns[0]

    async def chat(
        self,
        model_id: str,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        think: bool = False,
    ) -> ChatResponse:
        self.calls.append(RecordedCall(model_id, tuple(messages), list(tools) if tools else None, think))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.hold_from_call is not None and len(self.calls) >= self.hold_from_call:
                await self.release.wait()
        finally:
            self.in_flight -= 1
        turn = self._next_turn()
        if isinstance(turn, Exception):
            raise turn
        if callable(turn):
            turn = turn(messages)
        return ChatResponse(message=turn, model=model_id)

    async def chat_stream(
        self,
        model_id: str,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
    ):
        self.stream_calls.append(RecordedCall(model_id, tuple(messages), list(tools) if tools else None))
        for piece in self.stream_pieces:
            await asyncio.sleep(0)
            yield StreamChunk(content=piece)
        yield StreamChunk(done=True, message=Message.assistant("".join(self.stream_pieces)))


def tool_call_turn(*calls: tuple[str, str, dict[str, Any]], content: str = "") -> Message:
    """Assistant turn requesting ``(id, name, arguments)`` tool calls."""
    return Message.assistant(
        content,
        tool_calls=tuple(ToolCallRequest(id=call_id, name=name, arguments=args) for call_id, name, args in calls),
    )


class FreeformInput(BaseModel):
    """Accepts any arguments."""

    model_config = ConfigDict(extra="allow")


def make_tool(
    name: str,
    handler: Callable[[Any], Awaitable[str]] | None = None,
    display_name: str | None = None,
) -> Tool:
    """Build a test tool; the default handler echoes its arguments."""

    async def echo(params: BaseModel) -> str:
        return f"{name} result: {params.model_dump()}"

    return Tool(
        name=name,
        description=f"Test tool {name}",
        input_schema_class=FreeformInput,
        handler=handler or echo,
        display_name=display_name,
    )


@pytest.fixture
def transport():
    """Scripted transport answering with a plain greeting."""
    return ScriptedTransport()


@pytest.fixture
def registry():
    """Registry with two echoing tools."""
    return ToolsRegistry([make_tool("lookup", display_name="🔎 Lookup"), make_tool("clock")])
