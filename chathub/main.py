"""Main FastAPI application."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chathub import __version__
from chathub.api.endpoints import router
from chathub.clients.ollama import close_ollama_client
from chathub.config import get_settings
from chathub.utils.logging import setup_logging

setup_logging(get_settings().logging)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await close_ollama_client()


# Create FastAPI application
app = FastAPI(
    title="Private Chat Hub",
    description=(
        "Chat service for self-hosted language models with an agentic tool-calling loop "
        "(web search, URL reading, time lookup, calculator) and streamed replies."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    tags_metadata=[
        {
            "name": "Conversations",
            "description": "Create conversations, send messages and stream replies as NDJSON snapshots.",
        },
        {
            "name": "Models",
            "description": "Installed models and their capabilities.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("chathub.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
