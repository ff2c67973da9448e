"""Service settings assembled from the environment."""

import os

from pydantic import BaseModel, ConfigDict, Field

from chathub.agent.loop import AgentConfig
from chathub.agent.memory import MemoryPolicy
from chathub.clients.jina import JinaConfig
from chathub.clients.ollama import OllamaConfig
from chathub.tools.registry import ToolConfig
from chathub.utils.logging import LogConfig


class Settings(BaseModel):
    """All component configurations for one service instance."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    jina: JinaConfig = Field(default_factory=JinaConfig)
    tools: ToolConfig = Field(default_factory=ToolConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    logging: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from environment variables.

        Raises:
            ValueError: If a variable holds a value of the wrong type, an unknown memory policy or log level
        """
        try:
            settings = cls(
                ollama=OllamaConfig.from_env(),
                jina=JinaConfig.from_env(),
                tools=ToolConfig.from_env(),
                agent=AgentConfig.from_env(),
                logging=LogConfig(level=os.getenv("LOG_LEVEL", "INFO")),
            )
        except ValueError as e:
            raise ValueError(f"Invalid configuration: {e}") from e

        if settings.agent.memory_policy != MemoryPolicy.UNBOUNDED and settings.agent.memory_window is None:
            raise ValueError("Invalid configuration: CHATHUB_MEMORY_WINDOW is required for sliding memory policies")
        return settings


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the settings read from the environment."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
