"""Tools registry for managing assistant tools."""

import asyncio
import os
import time
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from chathub.clients.jina import JinaClient
from chathub.errors import ToolExecutionError
from chathub.models.llm import ToolDefinition, ToolExecutionResult
from chathub.tools.base import Tool
from chathub.tools.calculator import create_calculator_tool
from chathub.tools.current_datetime import create_current_datetime_tool
from chathub.tools.read_url import create_read_url_tool
from chathub.tools.web_search import create_web_search_tool
from chathub.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ToolConfig:
    """Which tools are registered and how they run."""

    enabled: bool = True
    web_search_enabled: bool = True
    calculator_enabled: bool = True
    max_search_results: int = 5
    timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "ToolConfig":
        return cls(
            enabled=os.getenv("CHATHUB_TOOLS_ENABLED", "true").lower() != "false",
            web_search_enabled=os.getenv("CHATHUB_WEB_SEARCH_ENABLED", "true").lower() != "false",
            calculator_enabled=os.getenv("CHATHUB_CALCULATOR_ENABLED", "true").lower() != "false",
            max_search_results=int(os.getenv("CHATHUB_MAX_SEARCH_RESULTS", str(cls.max_search_results))),
            timeout_seconds=float(os.getenv("CHATHUB_TOOL_TIMEOUT", str(cls.timeout_seconds))),
        )


def _format_validation_error(tool_name: str, error: ValidationError) -> str:
    problems = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"]) or "arguments"
        problems.append(f"{location}: {detail['msg']}")
    return f"Invalid arguments for {tool_name}: " + "; ".join(problems)


class ToolsRegistry:
    """Registry of the tools offered to the model.

    Populated once at startup and read-only afterwards, so one instance is
    shared by every conversation.
    """

    def __init__(self, tools: list[Tool] | None = None, timeout_seconds: float = 10.0):
        """Initialize tools registry.

        Args:
            tools: Tools to register
            timeout_seconds: Hard limit for a single tool invocation
        """
        self.timeout_seconds = timeout_seconds
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register_tool(tool)

    def register_tool(self, tool: Tool) -> None:
        """Register a new tool in the registry."""
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def lookup(self, name: str) -> ToolDefinition | None:
        """Get the definition of a tool, or None if it is not registered."""
        tool = self._tools.get(name)
        return tool.definition if tool else None

    def definitions(self) -> list[ToolDefinition]:
        """Definitions of all registered tools, in registration order."""
        return [tool.definition for tool in self._tools.values()]

    def display_name(self, name: str) -> str:
        """Label used in status messages while a tool runs."""
        tool = self._tools.get(name)
        if tool and tool.display_name:
            return tool.display_name
        return name

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolExecutionResult:
        """Run a tool. Never raises; every failure becomes a failure result."""
        started = time.perf_counter()

        def elapsed_ms() -> int:
            return int((time.perf_counter() - started) * 1000)

        tool = self._tools.get(name)
        if tool is None:
            logger.error(f"Unknown tool requested: {name}")
            return ToolExecutionResult.failure(name, f"Error: Unknown tool {name}", elapsed_ms())

        try:
            params = tool.parse_input(arguments)
        except ValidationError as e:
            logger.warning(f"Tool {name} received invalid arguments: {arguments}")
            return ToolExecutionResult.failure(name, _format_validation_error(name, e), elapsed_ms())

        logger.debug(f"Executing tool: {name} with input: {arguments}")
        try:
            content = await asyncio.wait_for(tool.handler(params), timeout=self.timeout_seconds)
        except TimeoutError:
            logger.warning(f"Tool {name} timed out after {self.timeout_seconds:g}s")
            return ToolExecutionResult.failure(
                name, f"Error: {name} timed out after {self.timeout_seconds:g} seconds", elapsed_ms()
            )
        except ToolExecutionError as e:
            logger.warning(f"Tool {name} failed: {e}")
            return ToolExecutionResult.failure(name, str(e), elapsed_ms())
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}")
            return ToolExecutionResult.failure(name, f"Error: {e!s}", elapsed_ms())

        logger.debug(f"Tool {name} succeeded: {content[:100]}...")
        return ToolExecutionResult(tool_name=name, content=content, success=True, execution_time_ms=elapsed_ms())


def build_default_registry(config: ToolConfig, jina_client: JinaClient | None = None) -> ToolsRegistry:
    """Build the registry for the given configuration.

    Web tools are only offered when a Jina client is configured.
    """
    if not config.enabled:
        return ToolsRegistry(timeout_seconds=config.timeout_seconds)

    tools = [create_current_datetime_tool()]
    if config.web_search_enabled and jina_client is not None:
        tools.append(create_web_search_tool(jina_client, config.max_search_results))
        tools.append(create_read_url_tool(jina_client))
    if config.calculator_enabled:
        tools.append(create_calculator_tool())

    registry = ToolsRegistry(tools, timeout_seconds=config.timeout_seconds)
    logger.info(f"Tools registry initialized with: {', '.join(registry.get_tool_names())}")
    return registry


_tools_registry: ToolsRegistry | None = None


def get_tools_registry(config: ToolConfig | None = None, jina_client: JinaClient | None = None) -> ToolsRegistry:
    """Get or create tools registry instance."""
    global _tools_registry

    if _tools_registry is None:
        _tools_registry = build_default_registry(config or ToolConfig.from_env(), jina_client)

    return _tools_registry
