"""On-device inference engines and transport selection.

Local engines are probed once at startup. When none is present the
``UnavailableLocalEngine`` variant is installed, so callers never have to
check whether an engine method exists.
"""

from collections.abc import AsyncIterator, Sequence
from typing import Protocol, runtime_checkable

from chathub.clients.base import InferenceTransport
from chathub.errors import TransportUnavailableError
from chathub.models.capabilities import ModelId
from chathub.models.llm import ChatResponse, StreamChunk, ToolDefinition
from chathub.models.messages import Message
from chathub.utils.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class LocalEngineTransport(InferenceTransport, Protocol):
    """Inference transport backed by an in-process engine."""

    @property
    def engine_name(self) -> str:
        """Human-readable engine name."""
        ...

    @property
    def is_available(self) -> bool:
        """Whether the engine can serve requests."""
        ...


class UnavailableLocalEngine:
    """Local engine variant for platforms without on-device inference."""

    def __init__(self, engine_name: str = "on-device", reason: str = "On-device inference is not available"):
        self._engine_name = engine_name
        self.reason = reason

    @property
    def engine_name(self) -> str:
        return self._engine_name

    @property
    def is_available(self) -> bool:
        return False

    async def chat(
        self,
        model_id: str,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        think: bool = False,
    ) -> ChatResponse:
        raise TransportUnavailableError(self._engine_name, self.reason)

    async def chat_stream(
        self,
        model_id: str,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        raise TransportUnavailableError(self._engine_name, self.reason)
        yield  # pragma: no cover


def resolve_transport(
    model_id: ModelId,
    remote: InferenceTransport,
    local: LocalEngineTransport,
) -> InferenceTransport:
    """Pick the transport serving ``model_id``.

    ``local:``-prefixed models go to the local engine, even when it is
    unavailable; its calls then fail with ``TransportUnavailableError``.
    """
    if model_id.is_local:
        if not local.is_available:
            logger.warning(f"Model {model_id} requested but local engine '{local.engine_name}' is unavailable")
        return local
    return remote
