"""Ollama API client with retries, context budgeting and NDJSON streaming."""

import asyncio
import json
import os
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

import httpx
import tiktoken

from chathub.errors import TransportError
from chathub.models.llm import ChatResponse, LLMUsage, StreamChunk, ToolDefinition
from chathub.models.messages import Message, Role, ToolCallRequest
from chathub.utils.ids import new_id
from chathub.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class OllamaConfig:
    """Configuration for the Ollama API client."""

    base_url: str = "http://localhost:11434"
    request_timeout: float = 120.0
    connect_timeout: float = 10.0
    max_retries: int = 3
    retry_delay: float = 1.0
    keep_alive: str | None = None

    # Token limits for truncation
    max_context_tokens: int = 32768
    token_headroom: int = 2048  # Reserve tokens for response

    @classmethod
    def from_env(cls) -> "OllamaConfig":
        """Build configuration from OLLAMA_* environment variables."""
        return cls(
            base_url=os.getenv("OLLAMA_BASE_URL", cls.base_url).rstrip("/"),
            request_timeout=float(os.getenv("OLLAMA_REQUEST_TIMEOUT", str(cls.request_timeout))),
            max_retries=int(os.getenv("OLLAMA_MAX_RETRIES", str(cls.max_retries))),
            max_context_tokens=int(os.getenv("OLLAMA_MAX_CONTEXT_TOKENS", str(cls.max_context_tokens))),
        )


def message_to_wire(message: Message) -> dict[str, Any]:
    """Serialize a message into the Ollama chat format."""
    payload: dict[str, Any] = {"role": message.role.value, "content": message.content}
    if message.images:
        payload["images"] = [image.model_dump(mode="json")["data"] for image in message.images]
    if message.tool_calls:
        payload["tool_calls"] = [
            {"id": call.id, "function": {"name": call.name, "arguments": call.arguments}}
            for call in message.tool_calls
        ]
    if message.role == Role.TOOL:
        payload["tool_call_id"] = message.tool_call_id
        if message.tool_name:
            payload["tool_name"] = message.tool_name
    return payload


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Tool call arguments are not valid JSON: {raw[:100]}")
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def message_from_wire(payload: dict[str, Any]) -> Message:
    """Parse an Ollama response message.

    Tool calls without an id get a generated one so results can be
    correlated.
    """
    tool_calls = tuple(
        ToolCallRequest(
            id=call.get("id") or new_id(),
            name=(call.get("function") or {}).get("name") or "",
            arguments=_parse_arguments((call.get("function") or {}).get("arguments")),
        )
        for call in payload.get("tool_calls") or []
    )
    return Message(
        role=Role(payload.get("role") or "assistant"),
        content=payload.get("content") or "",
        thinking=payload.get("thinking") or None,
        tool_calls=tool_calls,
    )


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except json.JSONDecodeError as e:
        raise TransportError(f"Invalid response from Ollama: {e}") from e
    if not isinstance(data, dict):
        raise TransportError("Invalid response from Ollama: expected a JSON object")
    return data


def _usage_from_wire(payload: dict[str, Any]) -> LLMUsage | None:
    if "prompt_eval_count" not in payload and "eval_count" not in payload:
        return None
    return LLMUsage(
        prompt_tokens=payload.get("prompt_eval_count") or 0,
        completion_tokens=payload.get("eval_count") or 0,
    )


class OllamaClient:
    """Async Ollama API client.

    One instance (and its connection pool) is shared by every conversation.
    """

    tokenizer: tiktoken.Encoding | None = None
    config: OllamaConfig
    http: httpx.AsyncClient

    def __init__(self, config: OllamaConfig | None = None, http_client: httpx.AsyncClient | None = None):
        """Initialize Ollama client.

        Args:
            config: Client configuration
            http_client: Optional preconfigured httpx client (tests inject a mock transport here)
        """
        self.config = config or OllamaConfig()
        self.http = http_client or httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.request_timeout, connect=self.config.connect_timeout),
        )

        try:
            # Close approximation for open-weight model tokenizers
            self.tokenizer = tiktoken.get_encoding("cl100k_base")
        except Exception:
            self.tokenizer = None

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self.http.aclose()

    def _build_payload(
        self,
        model_id: str,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None,
        stream: bool,
        think: bool = False,
    ) -> dict[str, Any]:
        truncated = self.truncate_conversation(list(messages), tools)
        payload: dict[str, Any] = {
            "model": model_id,
            "messages": [message_to_wire(m) for m in truncated],
            "stream": stream,
        }
        if tools:
            payload["tools"] = [tool.to_wire_format() for tool in tools]
        if think:
            payload["think"] = True
        if self.config.keep_alive:
            payload["keep_alive"] = self.config.keep_alive
        return payload

    async def chat(
        self,
        model_id: str,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        think: bool = False,
    ) -> ChatResponse:
        """Run one complete (non-streaming) chat turn.

        Raises:
            TransportError: If the server cannot be reached or answers with an error
        """
        payload = self._build_payload(model_id, messages, tools, stream=False, think=think)
        logger.debug(
            f"Calling {model_id} with {len(payload['messages'])} messages and {len(payload.get('tools', []))} tools"
        )

        response = await self._request_with_retries(lambda: self.http.post("/api/chat", json=payload))
        data = _json_body(response)
        message = message_from_wire(data.get("message") or {})

        logger.debug(f"Response received - done reason: {data.get('done_reason')}, tool calls: {len(message.tool_calls)}")

        return ChatResponse(
            message=message,
            model=data.get("model", model_id),
            done_reason=data.get("done_reason"),
            usage=_usage_from_wire(data),
        )

    async def chat_stream(
        self,
        model_id: str,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a chat turn token by token.

        Streams are not retried: a partial answer has already been shown.

        Raises:
            TransportError: On connection failure, HTTP error or an error line in the stream
        """
        payload = self._build_payload(model_id, messages, tools, stream=True)
        content_parts: list[str] = []
        thinking_parts: list[str] = []
        tool_calls: list[dict[str, Any]] = []

        try:
            async with self.http.stream("POST", "/api/chat", json=payload) as response:
                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(self._error_text(response.status_code, body), response.status_code)

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    data = json.loads(line)
                    if data.get("error"):
                        raise TransportError(str(data["error"]))

                    delta = data.get("message") or {}
                    content = delta.get("content") or ""
                    thinking = delta.get("thinking") or ""
                    content_parts.append(content)
                    thinking_parts.append(thinking)
                    tool_calls.extend(delta.get("tool_calls") or [])

                    if data.get("done"):
                        final = message_from_wire(
                            {
                                "role": "assistant",
                                "content": "".join(content_parts),
                                "thinking": "".join(thinking_parts),
                                "tool_calls": tool_calls,
                            }
                        )
                        yield StreamChunk(
                            content=content, thinking=thinking, done=True, message=final, usage=_usage_from_wire(data)
                        )
                        return

                    yield StreamChunk(content=content, thinking=thinking)
        except httpx.HTTPError as e:
            raise TransportError(f"Connection to Ollama failed: {e}") from e
        except json.JSONDecodeError as e:
            raise TransportError(f"Malformed stream line from Ollama: {e}") from e

        raise TransportError("Stream ended before the model finished its turn")

    async def list_models(self) -> list[dict[str, Any]]:
        """List models installed on the server."""
        response = await self._request_with_retries(lambda: self.http.get("/api/tags"))
        return _json_body(response).get("models", [])

    async def _request_with_retries(self, call: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
        """Execute an Ollama API request with retry logic."""
        for attempt in range(self.config.max_retries):
            is_last = attempt == self.config.max_retries - 1
            try:
                response = await call()
            except httpx.TimeoutException as e:
                if not is_last:
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue
                raise TransportError(f"Request to Ollama timed out: {e}") from e
            except httpx.HTTPError as e:
                if not is_last:
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue
                raise TransportError(f"Connection to Ollama failed: {e}") from e

            if response.status_code >= 500 and not is_last:
                # Server error, retry with exponential backoff
                logger.warning(f"Ollama returned {response.status_code}, retrying (attempt {attempt + 1})")
                await asyncio.sleep(self.config.retry_delay * (2**attempt))
                continue

            if response.status_code != 200:
                raise TransportError(self._error_text(response.status_code, response.text), response.status_code)

            return response

        raise TransportError(f"Failed to complete request after {self.config.max_retries} attempts")

    @staticmethod
    def _error_text(status_code: int, body: str) -> str:
        try:
            detail = json.loads(body).get("error", body)
        except (json.JSONDecodeError, AttributeError):
            detail = body
        return f"Ollama returned HTTP {status_code}: {detail}"

    def estimate_message_tokens(self, text: str) -> int:
        """Estimate token count for a piece of text.

        Args:
            text: Message content

        Returns:
            Estimated token count
        """
        try:
            return len(self.tokenizer.encode(text)) if self.tokenizer else len(text) // 4
        except Exception:
            # Fallback: roughly 4 characters per token
            return len(text) // 4

    def truncate_conversation(
        self, messages: list[Message], tools: Sequence[ToolDefinition] | None = None
    ) -> list[Message]:
        """Drop the oldest non-system messages until the request fits the context budget.

        System messages are always kept and relative order is preserved.
        """
        if not messages:
            return messages

        available_tokens = self.config.max_context_tokens - self.config.token_headroom
        if tools:
            available_tokens -= self.estimate_message_tokens(
                "".join(tool.name + tool.description + json.dumps(tool.parameters) for tool in tools)
            )

        costs = [self.estimate_message_tokens(m.content) for m in messages]
        available_tokens -= sum(cost for m, cost in zip(messages, costs, strict=True) if m.role == Role.SYSTEM)

        keep: set[int] = {i for i, m in enumerate(messages) if m.role == Role.SYSTEM}
        current_tokens = 0
        for index in range(len(messages) - 1, -1, -1):
            if index in keep:
                continue
            if current_tokens + costs[index] > available_tokens:
                break
            keep.add(index)
            current_tokens += costs[index]

        truncated = [m for i, m in enumerate(messages) if i in keep]
        if len(truncated) < len(messages):
            logger.warning(
                f"Truncated conversation from {len(messages)} to {len(truncated)} messages "
                f"to fit within {available_tokens} token limit"
            )
        return truncated


_ollama_client: OllamaClient | None = None


def get_ollama_client(config: OllamaConfig | None = None) -> OllamaClient:
    """Get or create the shared Ollama client instance."""
    global _ollama_client
    if _ollama_client is None:
        _ollama_client = OllamaClient(config or OllamaConfig.from_env())
    return _ollama_client


async def close_ollama_client() -> None:
    """Close the shared client, if one was created."""
    global _ollama_client
    if _ollama_client is not None:
        await _ollama_client.aclose()
        _ollama_client = None
