"""Agentic tool-calling loop and its context memory."""

from chathub.agent.loop import AgentConfig, AgentLoop
from chathub.agent.memory import (
    Memory,
    MemoryPolicy,
    SlidingWindowMemory,
    SystemPlusSlidingMemory,
    UnboundedMemory,
    build_memory,
)

__all__ = [
    "AgentConfig",
    "AgentLoop",
    "Memory",
    "MemoryPolicy",
    "SlidingWindowMemory",
    "SystemPlusSlidingMemory",
    "UnboundedMemory",
    "build_memory",
]
