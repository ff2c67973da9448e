"""Logging configuration."""

import logging
import sys

from pydantic import BaseModel, field_validator


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    # HTTP client and access logs are noisy at INFO while streaming
    quiet_loggers: tuple[str, ...] = ("httpx", "httpcore", "uvicorn.access")

    @field_validator("level")
    @classmethod
    def check_level(cls, v: str) -> str:
        """Accept standard level names in any case."""
        level = v.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level


def setup_logging(config: LogConfig | None = None) -> None:
    """Set up logging for the service from its settings."""
    config = config or LogConfig()

    logging.basicConfig(
        level=config.level,
        format=config.format,
        datefmt=config.date_format,
        stream=sys.stdout,
        force=True,
    )

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Get a logger for a specific module.

    Args:
        name: Module name (typically __name__)
        level: Optional explicit level; otherwise the level set up by ``setup_logging`` applies

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    if level:
        logger.setLevel(level.upper())
    return logger
