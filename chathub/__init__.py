"""Private Chat Hub: chat service for self-hosted language models."""

__version__ = "0.1.0"
