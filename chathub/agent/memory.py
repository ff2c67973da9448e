"""Context window management for the agent loop.

A memory holds the ordered message history sent to the model on every
loop iteration. Policies only ever drop messages from the oldest end;
relative order is never changed.
"""

from abc import ABC, abstractmethod
from enum import StrEnum

from chathub.models.messages import Message, Role


class MemoryPolicy(StrEnum):
    """Available truncation policies."""

    UNBOUNDED = "unbounded"
    SLIDING_WINDOW = "sliding_window"
    SYSTEM_PLUS_SLIDING = "system_plus_sliding"


class Memory(ABC):
    """Ordered message history with a truncation policy applied on append."""

    def __init__(self) -> None:
        self._messages: list[Message] = []

    def append(self, message: Message) -> None:
        """Add a message and trim according to the policy."""
        self._messages.append(message)
        self._messages = self._trim(self._messages)

    def extend(self, messages: list[Message]) -> None:
        for message in messages:
            self.append(message)

    def snapshot(self) -> tuple[Message, ...]:
        """Immutable view of the current history."""
        return tuple(self._messages)

    def clear(self) -> None:
        self._messages = []

    def __len__(self) -> int:
        return len(self._messages)

    @abstractmethod
    def _trim(self, messages: list[Message]) -> list[Message]:
        """Return the messages the policy retains, in their original order."""


class UnboundedMemory(Memory):
    """Keeps everything, up to an optional hard cap.

    Past the cap the oldest non-system messages are dropped first.
    """

    def __init__(self, max_messages: int | None = None):
        if max_messages is not None and max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        super().__init__()
        self.max_messages = max_messages

    def _trim(self, messages: list[Message]) -> list[Message]:
        if self.max_messages is None or len(messages) <= self.max_messages:
            return messages

        excess = len(messages) - self.max_messages
        kept: list[Message] = []
        for message in messages:
            if excess > 0 and message.role != Role.SYSTEM:
                excess -= 1
                continue
            kept.append(message)

        # Only system messages left to drop
        return kept[len(kept) - self.max_messages :] if len(kept) > self.max_messages else kept


class SlidingWindowMemory(Memory):
    """Keeps only the most recent ``window_size`` messages."""

    def __init__(self, window_size: int):
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        super().__init__()
        self.window_size = window_size

    def _trim(self, messages: list[Message]) -> list[Message]:
        return messages[-self.window_size :]


class SystemPlusSlidingMemory(Memory):
    """Keeps every system message plus the most recent ``window_size`` others."""

    def __init__(self, window_size: int):
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        super().__init__()
        self.window_size = window_size

    def _trim(self, messages: list[Message]) -> list[Message]:
        non_system = [i for i, m in enumerate(messages) if m.role != Role.SYSTEM]
        dropped = set(non_system[: max(0, len(non_system) - self.window_size)])
        return [m for i, m in enumerate(messages) if i not in dropped]


def build_memory(policy: MemoryPolicy | str, window_size: int | None = None) -> Memory:
    """Create a memory for the given policy.

    ``window_size`` is the window for the sliding policies and the hard cap
    for the unbounded one.
    """
    match MemoryPolicy(policy):
        case MemoryPolicy.UNBOUNDED:
            return UnboundedMemory(max_messages=window_size)
        case MemoryPolicy.SLIDING_WINDOW:
            if window_size is None:
                raise ValueError("sliding_window policy requires a window size")
            return SlidingWindowMemory(window_size)
        case MemoryPolicy.SYSTEM_PLUS_SLIDING:
            if window_size is None:
                raise ValueError("system_plus_sliding policy requires a window size")
            return SystemPlusSlidingMemory(window_size)
