"""API endpoints for the chat service."""

from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import StreamingResponse

from chathub import __version__
from chathub.clients.ollama import OllamaClient, get_ollama_client
from chathub.errors import ConversationNotFoundError, TransportError, format_user_facing_error
from chathub.models.conversation import (
    CancelResponse,
    Conversation,
    ConversationSummary,
    CreateConversationRequest,
    HealthResponse,
    ModelInfo,
    SendMessageRequest,
    UpdateConversationRequest,
)
from chathub.services.conversation import ConversationStreamController, get_stream_controller
from chathub.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

Controller = Annotated[ConversationStreamController, Depends(get_stream_controller)]


def ollama_client() -> OllamaClient:
    """Shared Ollama client dependency."""
    return get_ollama_client()


Ollama = Annotated[OllamaClient, Depends(ollama_client)]


def _load(controller: ConversationStreamController, conversation_id: str) -> Conversation:
    try:
        return controller.store.get_conversation(conversation_id)
    except ConversationNotFoundError as e:
        logger.warning(f"Unknown conversation requested: {conversation_id}")
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )


@router.get("/models", response_model=list[ModelInfo], tags=["Models"])
async def list_models(controller: Controller, ollama: Ollama) -> list[ModelInfo]:
    """List installed models with their resolved capabilities."""
    try:
        models = await ollama.list_models()
    except TransportError as e:
        logger.error(f"Failed to list models: {e}")
        raise HTTPException(status_code=502, detail=format_user_facing_error(e)) from e

    return [
        ModelInfo(
            name=model["name"],
            size=model.get("size"),
            modified_at=model.get("modified_at"),
            capabilities=controller.capabilities.resolve_raw(model["name"]),
        )
        for model in models
        if model.get("name")
    ]


@router.post("/conversations", response_model=Conversation, status_code=201, tags=["Conversations"])
async def create_conversation(request: CreateConversationRequest, controller: Controller) -> Conversation:
    """Create a conversation with the selected model."""
    try:
        return controller.create_conversation(
            request.model,
            title=request.title,
            system_prompt=request.system_prompt,
            tool_calling_enabled=request.tool_calling_enabled,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.get("/conversations", response_model=list[ConversationSummary], tags=["Conversations"])
async def list_conversations(controller: Controller) -> list[ConversationSummary]:
    """List conversations, most recently updated first."""
    return [ConversationSummary.from_conversation(c) for c in controller.store.list_conversations()]


@router.get("/conversations/{conversation_id}", response_model=Conversation, tags=["Conversations"])
async def get_conversation(conversation_id: str, controller: Controller) -> Conversation:
    """Get a conversation with all its messages."""
    return _load(controller, conversation_id)


@router.patch("/conversations/{conversation_id}", response_model=Conversation, tags=["Conversations"])
async def update_conversation(
    conversation_id: str, request: UpdateConversationRequest, controller: Controller
) -> Conversation:
    """Rename a conversation or toggle tool calling."""
    _load(controller, conversation_id)
    return controller.update_settings(
        conversation_id, title=request.title, tool_calling_enabled=request.tool_calling_enabled
    )


@router.delete("/conversations/{conversation_id}", status_code=204, tags=["Conversations"])
async def delete_conversation(conversation_id: str, controller: Controller) -> Response:
    """Delete a conversation, cancelling any generation in flight."""
    _load(controller, conversation_id)
    await controller.delete_conversation(conversation_id)
    return Response(status_code=204)


@router.post("/conversations/{conversation_id}/messages", tags=["Conversations"])
async def send_message(
    conversation_id: str, request: SendMessageRequest, controller: Controller
) -> StreamingResponse:
    """Send a message and stream conversation snapshots as NDJSON."""
    _load(controller, conversation_id)
    logger.info(f"Processing message for conversation {conversation_id}: {request.text[:50]}...")

    async def snapshots() -> AsyncIterator[str]:
        async for conversation in controller.send(conversation_id, request.text):
            yield conversation.model_dump_json() + "\n"

    return StreamingResponse(snapshots(), media_type="application/x-ndjson")


@router.post("/conversations/{conversation_id}/cancel", response_model=CancelResponse, tags=["Conversations"])
async def cancel_generation(conversation_id: str, controller: Controller) -> CancelResponse:
    """Cancel the in-flight reply of a conversation."""
    _load(controller, conversation_id)
    return CancelResponse(cancelled=controller.cancel(conversation_id))
