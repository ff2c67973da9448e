"""Tools available to the assistant."""

from chathub.tools.base import Tool
from chathub.tools.registry import ToolConfig, ToolsRegistry, build_default_registry, get_tools_registry

__all__ = ["Tool", "ToolConfig", "ToolsRegistry", "build_default_registry", "get_tools_registry"]
