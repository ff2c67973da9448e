"""LLM-related data models and types (backend-agnostic)."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from chathub.models.messages import Message, utc_now


class ToolDefinition(BaseModel):
    """Model-facing description of a tool.

    ``description`` and ``parameters`` are prompt surface: they are sent to
    the model exactly as registered.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_wire_format(self) -> dict[str, Any]:
        """Tool definition in the function-calling request format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolExecutionResult(BaseModel):
    """Outcome of running a tool. Failures are data, not exceptions."""

    model_config = ConfigDict(frozen=True)

    tool_name: str
    content: str
    success: bool = True
    execution_time_ms: int | None = None

    @classmethod
    def failure(cls, tool_name: str, content: str, execution_time_ms: int | None = None) -> "ToolExecutionResult":
        """Create a failure result carrying a message for the model."""
        return cls(tool_name=tool_name, content=content, success=False, execution_time_ms=execution_time_ms)


StepType = Literal["input", "thinking", "tool_call", "tool_result", "answer"]


class AgentStep(BaseModel):
    """One observational trace entry of the agent loop."""

    model_config = ConfigDict(frozen=True)

    type: StepType
    content: str
    tool_name: str | None = None
    tool_args: dict[str, Any] | None = None
    tool_call_id: str | None = None
    success: bool | None = None
    timestamp: datetime = Field(default_factory=utc_now)


class AgentState(StrEnum):
    """States of the agent loop state machine."""

    AWAITING_MODEL_TURN = "awaiting_model_turn"
    MODEL_RESPONDED_WITH_TOOL_CALLS = "model_responded_with_tool_calls"
    EXECUTING_TOOLS = "executing_tools"
    MODEL_RESPONDED_WITH_FINAL_ANSWER = "model_responded_with_final_answer"
    TERMINATED_SUCCESS = "terminated_success"
    TERMINATED_MAX_ITERATIONS = "terminated_max_iterations"
    TERMINATED_ERROR = "terminated_error"
    TERMINATED_CANCELLED = "terminated_cancelled"


MAX_ITERATIONS_ERROR = "Max iterations reached"


@dataclass
class LLMUsage:
    """Token usage reported by the backend."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Prompt plus completion tokens."""
        return self.prompt_tokens + self.completion_tokens

    def add(self, other: "LLMUsage | None") -> None:
        """Accumulate another usage record into this one."""
        if other is None:
            return
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens


@dataclass
class ChatResponse:
    """A complete model turn returned by the transport."""

    message: Message
    model: str
    done_reason: str | None = None
    usage: LLMUsage | None = None


@dataclass
class StreamChunk:
    """Incremental piece of a streamed model turn.

    The last chunk has ``done=True`` and carries the assembled message,
    including any tool-call requests.
    """

    content: str = ""
    thinking: str = ""
    done: bool = False
    message: Message | None = None
    usage: LLMUsage | None = None


@dataclass
class AgentResponse:
    """Result from executing the agent loop."""

    response: str
    steps: list[AgentStep]
    success: bool
    state: AgentState
    error: str | None = None
    iterations: int = 0
    thinking: str | None = None
    usage: LLMUsage = field(default_factory=LLMUsage)

    @property
    def max_iterations_reached(self) -> bool:
        """Whether the loop gave up without a final answer."""
        return self.state == AgentState.TERMINATED_MAX_ITERATIONS

    @property
    def cancelled(self) -> bool:
        """Whether the caller cancelled the loop."""
        return self.state == AgentState.TERMINATED_CANCELLED
