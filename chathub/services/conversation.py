"""Conversation stream controller.

Turns one user message into a stream of conversation snapshots. Each send
either runs the agent loop (tools) or a plain streamed completion, and the
in-flight assistant message is updated copy-on-write as work progresses.
"""

import asyncio
import re
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass, field

from chathub.agent.loop import AgentConfig, AgentLoop
from chathub.agent.memory import build_memory
from chathub.clients.base import InferenceTransport
from chathub.clients.jina import JinaClient
from chathub.clients.local_engine import LocalEngineTransport, UnavailableLocalEngine, resolve_transport
from chathub.clients.ollama import get_ollama_client
from chathub.config import get_settings
from chathub.errors import TransportError, format_user_facing_error
from chathub.models.capabilities import CapabilityRegistry, ModelId, default_capability_registry
from chathub.models.conversation import Conversation, generate_title
from chathub.models.llm import AgentResponse, AgentStep
from chathub.models.messages import CANCELLED_TEXT, Attachment, ErrorCode, Message, Role
from chathub.services.conversation_store import ConversationStore, conversation_store
from chathub.tools.registry import ToolsRegistry, get_tools_registry
from chathub.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TITLE = "New Conversation"
STARTING_TOOLS_STATUS = "🔄 Starting tool execution..."
EMPTY_RESPONSE_TEXT = "The model returned an empty response. Try rephrasing your message or pick another model."

_URL_LINE = re.compile(r"^\s*URL:\s*(\S+)", re.MULTILINE)


@dataclass(frozen=True)
class CompletionEvent:
    """Emitted when a generation reaches a terminal state other than cancellation."""

    conversation_id: str
    title: str
    preview: str
    success: bool


CompletionListener = Callable[[CompletionEvent], None]


@dataclass
class _Generation:
    conversation: Conversation
    placeholder_id: str
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None
    finished: bool = False


def build_history(messages: Iterable[Message], include_tools: bool) -> list[Message]:
    """Messages from earlier turns to send to the model.

    Skips error bubbles, unfinished or cancelled placeholders, empty
    messages and system messages. Tool exchanges are kept only when
    ``include_tools`` is set and every call in them was answered.
    """
    messages = list(messages)
    answered = {m.tool_call_id for m in messages if m.role == Role.TOOL}
    history: list[Message] = []

    for message in messages:
        if message.is_error or message.is_streaming or message.is_cancelled or message.role == Role.SYSTEM:
            continue
        if message.role == Role.TOOL:
            if include_tools:
                history.append(message)
            continue
        if message.tool_calls:
            if include_tools and all(call.id in answered for call in message.tool_calls):
                history.append(message)
                continue
            message = message.model_copy(update={"tool_calls": ()})
        if not message.content.strip() and not message.attachments:
            continue
        history.append(message)

    return history


def extract_references(steps: Iterable[AgentStep]) -> tuple[str, ...]:
    """Source URLs from successful web tool results, deduplicated in order."""
    urls: list[str] = []
    for step in steps:
        if step.type != "tool_result" or not step.success:
            continue
        if step.tool_name == "web_search":
            urls.extend(_URL_LINE.findall(step.content))
        elif step.tool_name == "read_url" and step.tool_args and isinstance(step.tool_args.get("url"), str):
            urls.append(step.tool_args["url"].strip())
    return tuple(dict.fromkeys(url for url in urls if url))


class ConversationStreamController:
    """Runs generations for conversations and streams their progress.

    At most one generation runs per conversation; starting a new one
    cancels the previous. Different conversations run independently.
    """

    def __init__(
        self,
        store: ConversationStore,
        transport: InferenceTransport,
        tools: ToolsRegistry,
        capabilities: CapabilityRegistry,
        agent_config: AgentConfig | None = None,
        local_engine: LocalEngineTransport | None = None,
    ):
        """Initialize stream controller.

        Args:
            store: Persistence boundary for conversations
            transport: Remote model backend
            tools: Shared, read-only tool registry
            capabilities: Capability table used when a model is selected
            agent_config: Agent loop configuration
            local_engine: On-device engine, unavailable when not given
        """
        self.store = store
        self.transport = transport
        self.tools = tools
        self.capabilities = capabilities
        self.agent_config = agent_config or AgentConfig()
        self.local_engine = local_engine or UnavailableLocalEngine()
        self._active: dict[str, _Generation] = {}
        self._listeners: list[CompletionListener] = []

    def create_conversation(
        self,
        model_id: str,
        title: str | None = None,
        system_prompt: str | None = None,
        tool_calling_enabled: bool = True,
    ) -> Conversation:
        """Create a conversation, resolving the model's capabilities once.

        Raises:
            ValueError: If the model identifier is malformed
        """
        capabilities = self.capabilities.resolve(ModelId.parse(model_id))
        conversation = Conversation(
            model_id=model_id.strip(),
            title=title or DEFAULT_TITLE,
            capabilities=capabilities,
            system_prompt=system_prompt,
            tool_calling_enabled=tool_calling_enabled,
        )
        logger.info(f"Created conversation {conversation.id} for {conversation.model_id} ({capabilities.kind} model)")
        return self.store.create_conversation(conversation)

    def update_settings(
        self, conversation_id: str, title: str | None = None, tool_calling_enabled: bool | None = None
    ) -> Conversation:
        """Change a conversation's title or tool-calling flag."""
        conversation = self.store.get_conversation(conversation_id)
        changes: dict[str, object] = {}
        if title is not None:
            changes["title"] = title
        if tool_calling_enabled is not None:
            changes["tool_calling_enabled"] = tool_calling_enabled
        conversation = conversation.model_copy(update=changes)
        self.store.update_conversation(conversation)
        if (generation := self._active.get(conversation_id)) is not None:
            generation.conversation = generation.conversation.model_copy(update=changes)
        return conversation

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Cancel any generation for the conversation and delete it."""
        await self._cancel_and_wait(conversation_id)
        return self.store.delete_conversation(conversation_id)

    def add_completion_listener(self, listener: CompletionListener) -> None:
        self._listeners.append(listener)

    def remove_completion_listener(self, listener: CompletionListener) -> None:
        self._listeners.remove(listener)

    def is_generating(self, conversation_id: str) -> bool:
        """Whether a generation is in flight for the conversation."""
        return conversation_id in self._active

    def cancel(self, conversation_id: str) -> bool:
        """Cancel the in-flight generation of a conversation.

        Returns:
            True if a generation was running
        """
        generation = self._active.get(conversation_id)
        if generation is None:
            return False
        logger.info(f"Cancelling generation for conversation {conversation_id}")
        generation.cancel_event.set()
        if generation.task is not None:
            generation.task.cancel()
        return True

    async def _cancel_and_wait(self, conversation_id: str) -> None:
        while (generation := self._active.get(conversation_id)) is not None:
            self.cancel(conversation_id)
            if generation.task is not None:
                await asyncio.wait({generation.task})

    async def send(
        self, conversation_id: str, text: str, attachments: tuple[Attachment, ...] = ()
    ) -> AsyncIterator[Conversation]:
        """Send a user message and stream conversation snapshots until the reply is final.

        Raises:
            ConversationNotFoundError: If the conversation does not exist
        """
        await self._cancel_and_wait(conversation_id)

        # No awaits from here until the producer task exists, so the
        # conversation is claimed before any other send can observe it
        conversation = self.store.get_conversation(conversation_id)
        history = conversation.messages
        user_message = Message.user(text, attachments)
        placeholder = Message.assistant(is_streaming=True)

        generation = _Generation(conversation=conversation, placeholder_id=placeholder.id)
        self._active[conversation_id] = generation

        def add_user_message(c: Conversation) -> Conversation:
            if c.title == DEFAULT_TITLE and not any(m.role == Role.USER for m in history):
                c = c.model_copy(update={"title": generate_title(text)})
            return c.with_message(user_message)

        self._update(generation, add_user_message)
        self._update(generation, lambda c: c.with_message(placeholder))
        generation.task = asyncio.create_task(self._produce(generation, history, user_message))
        generation.task.add_done_callback(lambda task: self._on_task_done(generation, task))

        try:
            while (snapshot := await generation.queue.get()) is not None:
                yield snapshot
        finally:
            if not generation.finished:
                # Consumer went away mid-generation
                self.cancel(conversation_id)

    async def _produce(self, generation: _Generation, history: tuple[Message, ...], user_message: Message) -> None:
        conversation = generation.conversation
        try:
            if self._should_use_agent(conversation):
                await self._run_agentic(generation, history, user_message)
            else:
                await self._run_plain(generation, history, user_message)
        except asyncio.CancelledError:
            self._mark_cancelled(generation)
            raise
        except TransportError as e:
            logger.error(f"Transport failure in conversation {conversation.id}: {e}")
            self._fail(generation, format_user_facing_error(e), "transport")
        except Exception as e:
            logger.error(f"Generation failed in conversation {conversation.id}: {e}", exc_info=True)
            self._fail(generation, format_user_facing_error(e), "internal")
        finally:
            self._close(generation)

    def _should_use_agent(self, conversation: Conversation) -> bool:
        # The per-conversation flag is checked before anything else
        if not conversation.tool_calling_enabled:
            logger.info(f"Tool calling disabled for {conversation.id}, using plain generation")
            return False
        if not conversation.capabilities.supports_tools:
            logger.info(f"Model {conversation.model_id} does not support tools, using plain generation")
            return False
        if len(self.tools) == 0:
            logger.info("No tools registered, using plain generation")
            return False
        logger.info(f"Using agent loop for {conversation.id} with {len(self.tools)} tools")
        return True

    def _transport_for(self, conversation: Conversation) -> InferenceTransport:
        return resolve_transport(ModelId.parse(conversation.model_id), self.transport, self.local_engine)

    async def _run_agentic(
        self, generation: _Generation, history: tuple[Message, ...], user_message: Message
    ) -> None:
        conversation = generation.conversation
        memory = build_memory(self.agent_config.memory_policy, self.agent_config.memory_window)
        prior = build_history(history, include_tools=True)
        if conversation.system_prompt and prior:
            memory.append(Message.system(conversation.system_prompt))
        memory.extend(prior)

        loop = AgentLoop(
            self._transport_for(conversation),
            self.tools,
            conversation.model_id,
            memory,
            self.agent_config,
            system_prompt=conversation.system_prompt,
            think=self.agent_config.enable_thinking and conversation.capabilities.supports_thinking,
        )

        def on_message(message: Message) -> None:
            if message.role != Role.TOOL and not message.has_tool_calls:
                return
            self._update(generation, lambda c: c.with_messages_before(generation.placeholder_id, [message]))
            if message.has_tool_calls:
                self._update_placeholder(generation, status_message=STARTING_TOOLS_STATUS)

        def on_step(step: AgentStep) -> None:
            if step.type == "tool_call" and step.tool_name:
                status = f"⚙️ Executing {self.tools.display_name(step.tool_name)}..."
                self._update_placeholder(generation, persist=False, status_message=status)

        response = await loop.run(
            user_message,
            tool_calling_enabled=conversation.tool_calling_enabled,
            cancel_event=generation.cancel_event,
            on_step=on_step,
            on_message=on_message,
        )
        self._finish_agentic(generation, response)

    def _finish_agentic(self, generation: _Generation, response: AgentResponse) -> None:
        if response.cancelled:
            self._mark_cancelled(generation)
            return

        if response.success:
            if not response.response.strip():
                self._fail(generation, EMPTY_RESPONSE_TEXT, "empty_response")
                return
            self._update_placeholder(
                generation,
                content=response.response,
                thinking=response.thinking,
                references=extract_references(response.steps),
                is_streaming=False,
                status_message=None,
            )
            self._notify(generation, success=True)
            return

        if response.max_iterations_reached:
            self._update_placeholder(generation, persist=False, content=response.response)
            self._fail(generation, format_user_facing_error(response.error or ""), "max_iterations")
            return

        self._fail(generation, response.error or "The model produced an invalid response.", "malformed_turn")

    async def _run_plain(self, generation: _Generation, history: tuple[Message, ...], user_message: Message) -> None:
        conversation = generation.conversation
        messages: list[Message] = []
        if conversation.system_prompt:
            messages.append(Message.system(conversation.system_prompt))
        messages.extend(build_history(history, include_tools=False))
        messages.append(user_message)

        content = ""
        thinking = ""
        final: Message | None = None
        async for chunk in self._transport_for(conversation).chat_stream(conversation.model_id, messages):
            if chunk.content or chunk.thinking:
                content += chunk.content
                thinking += chunk.thinking
                self._update_placeholder(generation, persist=False, content=content, thinking=thinking or None)
            if chunk.done:
                final = chunk.message

        text = final.content if final is not None else content
        if not text.strip():
            self._fail(generation, EMPTY_RESPONSE_TEXT, "empty_response")
            return

        self._update_placeholder(
            generation, content=text, thinking=thinking or None, is_streaming=False, status_message=None
        )
        self._notify(generation, success=True)

    def _update(self, generation: _Generation, change: Callable[[Conversation], Conversation], persist: bool = True):
        generation.conversation = change(generation.conversation)
        if persist:
            self.store.update_conversation(generation.conversation)
        generation.queue.put_nowait(generation.conversation)

    def _update_placeholder(self, generation: _Generation, persist: bool = True, **changes: object) -> None:
        self._update(
            generation,
            lambda c: c.with_updated_message(generation.placeholder_id, lambda m: m.model_copy(update=changes)),
            persist=persist,
        )

    def _fail(self, generation: _Generation, error_message: str, error_code: ErrorCode) -> None:
        self._update(
            generation,
            lambda c: c.with_updated_message(generation.placeholder_id, lambda m: m.as_error(error_message, error_code)),
        )
        self._notify(generation, success=False)

    def _mark_cancelled(self, generation: _Generation) -> None:
        def cancelled(message: Message) -> Message:
            return message.model_copy(
                update={
                    "content": message.content or CANCELLED_TEXT,
                    "is_streaming": False,
                    "status_message": None,
                }
            )

        self._update(generation, lambda c: c.with_updated_message(generation.placeholder_id, cancelled))
        logger.info(f"Generation cancelled for conversation {generation.conversation.id}")

    def _notify(self, generation: _Generation, success: bool) -> None:
        conversation = generation.conversation
        message = conversation.get_message(generation.placeholder_id)
        preview = ""
        if message is not None:
            preview = (message.error_message if message.is_error else message.content) or ""
        event = CompletionEvent(
            conversation_id=conversation.id,
            title=conversation.title,
            preview=preview[:100],
            success=success,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Completion listener failed: {e}", exc_info=True)

    def _close(self, generation: _Generation) -> None:
        if generation.finished:
            return
        generation.finished = True
        conversation_id = generation.conversation.id
        if self._active.get(conversation_id) is generation:
            del self._active[conversation_id]
        generation.queue.put_nowait(None)

    def _on_task_done(self, generation: _Generation, task: asyncio.Task) -> None:
        if task.cancelled():
            if not generation.finished:
                # Cancelled before it started running
                self._mark_cancelled(generation)
                self._close(generation)
            return
        if (error := task.exception()) is not None:
            logger.error(f"Generation task ended with an unhandled error: {error}")
            self._close(generation)


_stream_controller: ConversationStreamController | None = None


def get_stream_controller() -> ConversationStreamController:
    """Get or create the stream controller wired from environment settings."""
    global _stream_controller
    if _stream_controller is None:
        settings = get_settings()
        jina_client = JinaClient(settings.jina) if settings.jina.api_key else None
        _stream_controller = ConversationStreamController(
            store=conversation_store,
            transport=get_ollama_client(settings.ollama),
            tools=get_tools_registry(settings.tools, jina_client),
            capabilities=default_capability_registry(),
            agent_config=settings.agent,
        )
    return _stream_controller
