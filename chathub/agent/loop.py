"""Agent loop: drive a model through tool calls until it produces an answer."""

import asyncio
import os
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass

from chathub.agent.memory import Memory, MemoryPolicy
from chathub.clients.base import InferenceTransport
from chathub.errors import MalformedTurnError, ToolCallingDisabledError
from chathub.models.llm import (
    MAX_ITERATIONS_ERROR,
    AgentResponse,
    AgentState,
    AgentStep,
    LLMUsage,
    ToolExecutionResult,
)
from chathub.models.messages import Message, ToolCallRequest
from chathub.tools.registry import ToolsRegistry
from chathub.utils.logging import get_logger

logger = get_logger(__name__)

NO_FINAL_ANSWER_TEXT = "Max iterations reached without final answer"

StepCallback = Callable[[AgentStep], None]
MessageCallback = Callable[[Message], None]


@dataclass
class AgentConfig:
    """Configuration for agent loop runs."""

    max_iterations: int = 10
    memory_policy: MemoryPolicy = MemoryPolicy.UNBOUNDED
    memory_window: int | None = None
    enable_thinking: bool = False

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.memory_policy = MemoryPolicy(self.memory_policy)

    @classmethod
    def from_env(cls) -> "AgentConfig":
        window = os.getenv("CHATHUB_MEMORY_WINDOW")
        return cls(
            max_iterations=int(os.getenv("CHATHUB_MAX_ITERATIONS", str(cls.max_iterations))),
            memory_policy=MemoryPolicy(os.getenv("CHATHUB_MEMORY_POLICY", MemoryPolicy.UNBOUNDED.value)),
            memory_window=int(window) if window else None,
            enable_thinking=os.getenv("CHATHUB_ENABLE_THINKING", "false").lower() == "true",
        )


def _check_unique_ids(calls: tuple[ToolCallRequest, ...]) -> None:
    duplicates = [call_id for call_id, count in Counter(call.id for call in calls).items() if count > 1]
    if duplicates:
        raise MalformedTurnError(f"duplicate tool call ids: {', '.join(duplicates)}")


class AgentLoop:
    """Runs one user turn through the model, executing requested tools.

    An instance owns its memory for the duration of ``run``; it is not safe
    to run it twice concurrently.
    """

    def __init__(
        self,
        transport: InferenceTransport,
        tools: ToolsRegistry,
        model_id: str,
        memory: Memory,
        config: AgentConfig | None = None,
        system_prompt: str | None = None,
        think: bool = False,
    ):
        """Initialize agent loop.

        Args:
            transport: Model backend, shared with other loops
            tools: Registry of tools offered to the model
            model_id: Model identifier sent to the transport
            memory: History fed to the model on every iteration
            config: Loop configuration
            system_prompt: Prepended when memory starts out empty
            think: Ask the model for a separate reasoning trace
        """
        self.transport = transport
        self.tools = tools
        self.model_id = model_id
        self.memory = memory
        self.config = config or AgentConfig()
        self.system_prompt = system_prompt
        self.think = think
        self.state = AgentState.AWAITING_MODEL_TURN

    async def run(
        self,
        user_input: Message | str,
        *,
        tool_calling_enabled: bool,
        cancel_event: asyncio.Event | None = None,
        on_step: StepCallback | None = None,
        on_message: MessageCallback | None = None,
    ) -> AgentResponse:
        """Process one user message.

        Args:
            user_input: The user's message
            tool_calling_enabled: The conversation's tool-calling flag; must be True
            cancel_event: Checked between iterations; when set the loop stops early
            on_step: Called for every trace step as it is recorded
            on_message: Called for every message appended to memory

        Returns:
            The final answer, or a failure response for max iterations, a
            malformed turn, or cancellation

        Raises:
            ToolCallingDisabledError: If ``tool_calling_enabled`` is False
            TransportError: If the model backend fails; the loop does not retry
        """
        if not tool_calling_enabled:
            raise ToolCallingDisabledError("Tool calling is disabled for this conversation")

        steps: list[AgentStep] = []
        usage = LLMUsage()
        thinking_parts: list[str] = []
        last_text = ""

        def record(step: AgentStep) -> None:
            steps.append(step)
            if on_step:
                on_step(step)

        def remember(message: Message) -> None:
            self.memory.append(message)
            if on_message:
                on_message(message)

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        def finish(state: AgentState, response: str, success: bool, iterations: int, error: str | None = None):
            self.state = state
            return AgentResponse(
                response=response,
                steps=steps,
                success=success,
                state=state,
                error=error,
                iterations=iterations,
                thinking="\n\n".join(thinking_parts) or None,
                usage=usage,
            )

        if self.system_prompt and len(self.memory) == 0:
            self.memory.append(Message.system(self.system_prompt))

        user_message = Message.user(user_input) if isinstance(user_input, str) else user_input
        remember(user_message)
        record(AgentStep(type="input", content=user_message.content))

        tool_definitions = self.tools.definitions() or None
        logger.info(
            f"Starting agent loop for {self.model_id} with {len(self.memory)} messages, "
            f"{len(tool_definitions or [])} tools, max_iterations: {self.config.max_iterations}"
        )

        for iteration in range(1, self.config.max_iterations + 1):
            if cancelled():
                logger.info(f"Agent loop cancelled before iteration {iteration}")
                return finish(AgentState.TERMINATED_CANCELLED, last_text, False, iteration - 1)

            self.state = AgentState.AWAITING_MODEL_TURN
            logger.debug(f"Agent loop iteration {iteration}/{self.config.max_iterations}")
            result = await self.transport.chat(
                self.model_id, self.memory.snapshot(), tools=tool_definitions, think=self.think
            )
            usage.add(result.usage)

            if cancelled():
                logger.info(f"Agent loop cancelled while awaiting model turn {iteration}")
                return finish(AgentState.TERMINATED_CANCELLED, last_text, False, iteration)

            message = result.message
            calls = tuple(call for call in message.tool_calls if call.name.strip())
            if len(calls) != len(message.tool_calls):
                logger.warning(f"Skipping {len(message.tool_calls) - len(calls)} tool calls with empty names")
                message = message.model_copy(update={"tool_calls": calls})

            try:
                _check_unique_ids(calls)
            except MalformedTurnError as e:
                logger.error(f"Agent loop terminated: {e}")
                return finish(AgentState.TERMINATED_ERROR, last_text, False, iteration, error=str(e))

            remember(message)
            if message.thinking and message.thinking.strip():
                thinking_parts.append(message.thinking)
                record(AgentStep(type="thinking", content=message.thinking))
            if message.content.strip():
                last_text = message.content

            if not calls:
                self.state = AgentState.MODEL_RESPONDED_WITH_FINAL_ANSWER
                record(AgentStep(type="answer", content=message.content))
                logger.info(f"Agent loop completed successfully in {iteration} iterations")
                return finish(AgentState.TERMINATED_SUCCESS, message.content, True, iteration)

            self.state = AgentState.MODEL_RESPONDED_WITH_TOOL_CALLS
            logger.info(f"Model requested {len(calls)} tools: {', '.join(call.name for call in calls)}")
            for call in calls:
                record(
                    AgentStep(
                        type="tool_call",
                        content=f"Calling {call.name}",
                        tool_name=call.name,
                        tool_args=call.arguments,
                        tool_call_id=call.id,
                    )
                )

            self.state = AgentState.EXECUTING_TOOLS
            results = await self._execute_all(calls)

            if cancelled():
                logger.info(f"Agent loop cancelled, discarding {len(results)} tool results")
                return finish(AgentState.TERMINATED_CANCELLED, last_text, False, iteration)

            # gather preserves request order regardless of completion order
            for call, tool_result in zip(calls, results, strict=True):
                record(
                    AgentStep(
                        type="tool_result",
                        content=tool_result.content,
                        tool_name=call.name,
                        tool_args=call.arguments,
                        tool_call_id=call.id,
                        success=tool_result.success,
                    )
                )
                remember(Message.tool(tool_result.content, tool_call_id=call.id, tool_name=call.name))

        logger.warning(f"Agent loop reached max iterations ({self.config.max_iterations})")
        return finish(
            AgentState.TERMINATED_MAX_ITERATIONS,
            last_text or NO_FINAL_ANSWER_TEXT,
            False,
            self.config.max_iterations,
            error=MAX_ITERATIONS_ERROR,
        )

    async def _execute_all(self, calls: tuple[ToolCallRequest, ...]) -> list[ToolExecutionResult]:
        """Run every call concurrently.

        Shielded so that cancelling the caller lets dispatched tools finish.
        """
        gathered = asyncio.gather(*(self.tools.execute(call.name, call.arguments) for call in calls))
        return await asyncio.shield(gathered)
