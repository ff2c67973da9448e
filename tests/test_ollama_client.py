"""Tests for the Ollama client."""

import json
from unittest.mock import Mock

import httpx
import pytest

from chathub.clients.ollama import OllamaClient, OllamaConfig, message_from_wire, message_to_wire
from chathub.errors import TransportError
from chathub.models.llm import ToolDefinition
from chathub.models.messages import Attachment, Message, Role, ToolCallRequest

WEATHER_TOOL = ToolDefinition(
    name="get_weather",
    description="Weather for a city",
    parameters={"type": "object", "properties": {"city": {"type": "string"}}, "required": ["city"]},
)


def make_client(handler, **config) -> OllamaClient:
    config = OllamaConfig(retry_delay=0, **config)
    http = httpx.AsyncClient(base_url=config.base_url, transport=httpx.MockTransport(handler))
    client = OllamaClient(config, http_client=http)
    client.tokenizer = None
    return client


def ndjson(*lines: dict) -> bytes:
    return "".join(json.dumps(line) + "\n" for line in lines).encode()


class TestWireFormat:
    """Tests for message serialization."""

    def test_tool_result_message(self):
        """Test that tool results carry their call id and tool name."""
        wire = message_to_wire(Message.tool("18°C", tool_call_id="c1", tool_name="get_weather"))

        assert wire == {"role": "tool", "content": "18°C", "tool_call_id": "c1", "tool_name": "get_weather"}

    def test_images_are_base64(self):
        """Test that image attachments are sent as base64 strings."""
        image = Attachment(name="cat.png", mime_type="image/png", data=b"\x89PNG")
        wire = message_to_wire(Message.user("What is this?", attachments=(image,)))

        assert wire["images"] == ["iVBORw=="]

    def test_assistant_tool_calls(self):
        """Test that tool calls are serialized as functions."""
        message = Message.assistant(tool_calls=(ToolCallRequest(id="c1", name="get_weather", arguments={"city": "Oslo"}),))

        wire = message_to_wire(message)

        assert wire["tool_calls"] == [{"id": "c1", "function": {"name": "get_weather", "arguments": {"city": "Oslo"}}}]

    def test_parse_tool_calls_without_id(self):
        """Test that missing ids are generated and string arguments decoded."""
        message = message_from_wire(
            {
                "role": "assistant",
                "content": "",
                "tool_calls": [{"function": {"name": "get_weather", "arguments": '{"city": "Oslo"}'}}],
            }
        )

        assert message.tool_calls[0].id
        assert message.tool_calls[0].arguments == {"city": "Oslo"}

    def test_parse_malformed_arguments(self):
        """Test that undecodable arguments become an empty map."""
        message = message_from_wire({"role": "assistant", "tool_calls": [{"function": {"name": "x", "arguments": "{"}}]})

        assert message.tool_calls[0].arguments == {}


class TestChat:
    """Tests for non-streaming chat."""

    @pytest.mark.asyncio
    async def test_request_and_response(self):
        """Test the request payload and parsed response."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "model": "llama3.1",
                    "message": {
                        "role": "assistant",
                        "content": "",
                        "tool_calls": [{"id": "t1", "function": {"name": "get_weather", "arguments": {"city": "Oslo"}}}],
                    },
                    "done_reason": "stop",
                    "prompt_eval_count": 12,
                    "eval_count": 5,
                },
            )

        client = make_client(handler)
        response = await client.chat("llama3.1", [Message.user("Weather in Oslo?")], tools=[WEATHER_TOOL], think=True)

        payload = seen[0]
        assert payload["model"] == "llama3.1"
        assert payload["stream"] is False
        assert payload["think"] is True
        assert payload["messages"] == [{"role": "user", "content": "Weather in Oslo?"}]
        assert payload["tools"] == [WEATHER_TOOL.to_wire_format()]
        assert response.message.role == Role.ASSISTANT
        assert response.message.tool_calls[0].name == "get_weather"
        assert response.usage.total_tokens == 17

    @pytest.mark.asyncio
    async def test_tools_omitted_when_none(self):
        """Test that no tools key is sent without tool definitions."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"message": {"role": "assistant", "content": "Hi"}})

        await make_client(handler).chat("llama3.1", [Message.user("Hi")])

        assert "tools" not in seen[0]
        assert "think" not in seen[0]

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        """Test that 5xx responses are retried with backoff."""
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"message": {"role": "assistant", "content": "Finally"}})

        response = await make_client(handler).chat("llama3.1", [Message.user("Hi")])

        assert attempts == 3
        assert response.message.content == "Finally"

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self):
        """Test that a missing model fails immediately with its status."""
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            return httpx.Response(404, json={"error": "model 'nope' not found"})

        with pytest.raises(TransportError, match="model 'nope' not found") as exc_info:
            await make_client(handler).chat("nope", [Message.user("Hi")])

        assert attempts == 1
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_connection_failure_after_retries(self):
        """Test that connection errors surface as transport errors."""
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            raise httpx.ConnectError("Connection refused")

        with pytest.raises(TransportError, match="Connection to Ollama failed"):
            await make_client(handler, max_retries=2).chat("llama3.1", [Message.user("Hi")])

        assert attempts == 2

    @pytest.mark.asyncio
    async def test_list_models(self):
        """Test listing installed models."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": [{"name": "llama3.1:8b"}, {"name": "qwen3:4b"}]})

        models = await make_client(handler).list_models()

        assert [m["name"] for m in models] == ["llama3.1:8b", "qwen3:4b"]


    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ["<html>Bad gateway</html>", "[1, 2]"])
    async def test_unreadable_body_is_transport_error(self, body):
        """Test that a 200 response without a JSON object is a transport failure."""
        client = make_client(lambda request: httpx.Response(200, text=body))

        with pytest.raises(TransportError, match="Invalid response from Ollama"):
            await client.chat("llama3.1", [Message.user("Hi")])
        with pytest.raises(TransportError, match="Invalid response from Ollama"):
            await client.list_models()


class TestChatStream:
    """Tests for NDJSON streaming."""

    @pytest.mark.asyncio
    async def test_streams_chunks_and_final_message(self):
        """Test incremental chunks followed by the assembled message."""
        body = ndjson(
            {"message": {"role": "assistant", "content": "Hel"}, "done": False},
            {"message": {"role": "assistant", "content": "lo"}, "done": False},
            {"message": {"role": "assistant", "content": "!"}, "done": True, "eval_count": 3},
        )
        client = make_client(lambda request: httpx.Response(200, content=body))

        chunks = [chunk async for chunk in client.chat_stream("llama3.1", [Message.user("Hi")])]

        assert [c.content for c in chunks] == ["Hel", "lo", "!"]
        assert chunks[-1].done is True
        assert chunks[-1].message.content == "Hello!"
        assert chunks[-1].usage.completion_tokens == 3

    @pytest.mark.asyncio
    async def test_stream_error_line(self):
        """Test that an error object in the stream raises."""
        body = ndjson({"message": {"content": "Hi"}, "done": False}, {"error": "model crashed"})
        client = make_client(lambda request: httpx.Response(200, content=body))

        with pytest.raises(TransportError, match="model crashed"):
            async for _ in client.chat_stream("llama3.1", [Message.user("Hi")]):
                pass

    @pytest.mark.asyncio
    async def test_stream_http_error(self):
        """Test that a non-200 status raises before any chunk."""
        client = make_client(lambda request: httpx.Response(404, json={"error": "model not found"}))

        with pytest.raises(TransportError) as exc_info:
            async for _ in client.chat_stream("nope", [Message.user("Hi")]):
                pass

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_stream_ending_early(self):
        """Test that a stream without a done line is an error."""
        body = ndjson({"message": {"content": "Hi"}, "done": False})
        client = make_client(lambda request: httpx.Response(200, content=body))

        with pytest.raises(TransportError, match="Stream ended"):
            async for _ in client.chat_stream("llama3.1", [Message.user("Hi")]):
                pass


class TestConversationTruncation:
    """Tests for context budget truncation."""

    @pytest.fixture
    def client(self):
        """Client with a small context budget and a mocked tokenizer."""
        client = make_client(lambda request: httpx.Response(200), max_context_tokens=1000, token_headroom=200)
        client.tokenizer = Mock()
        client.tokenizer.encode.side_effect = lambda text: ["t"] * len(text.split())
        return client

    def test_within_limit_unchanged(self, client):
        """Test that small conversations are not truncated."""
        messages = [Message.system("Be nice"), Message.user("Hi"), Message.assistant("Hello")]

        assert client.truncate_conversation(messages) == messages

    def test_drops_oldest_and_keeps_system(self, client):
        """Test that the oldest non-system messages go first."""
        long_text = " ".join(["word"] * 300)
        messages = [
            Message.system("Be nice"),
            Message.user(long_text),
            Message.assistant(long_text),
            Message.user(long_text),
            Message.user("Latest question"),
        ]

        result = client.truncate_conversation(messages)

        assert result[0].role == Role.SYSTEM
        assert result[-1].content == "Latest question"
        assert len(result) == 4
        assert result[1] is messages[2]

    def test_fallback_without_tokenizer(self, client):
        """Test the characters-per-token estimate."""
        client.tokenizer = None

        assert client.estimate_message_tokens("a" * 400) == 100
