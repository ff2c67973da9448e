"""Base types and definitions for tools."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from chathub.models.llm import ToolDefinition

ToolHandler = Callable[[Any], Awaitable[str]]


@dataclass(frozen=True)
class Tool:
    """A named capability the assistant can invoke.

    Handlers receive the validated input model and return text for the
    model. They signal failure by raising; the registry turns any
    exception into a failure result.
    """

    name: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler
    display_name: str | None = None

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        schema = self.input_schema_class.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        return schema

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)

    @property
    def definition(self) -> ToolDefinition:
        """Model-facing definition of this tool."""
        return ToolDefinition(name=self.name, description=self.description, parameters=self.get_json_schema())
