"""
Chat API routes.

Endpoints (mounted under /api and /api/v1):
- POST /chat - Answer a message
- POST /chat/stream - Answer a message as Server-Sent Events
- GET /chat/sources - Available knowledge sources
- GET /chat/session/{session_id} - A session with its messages
- DELETE /chat/session/{session_id} - Delete a session
"""

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from orchestral.core.exceptions import InvalidRequestError, SessionNotFoundError
from orchestral.core.logging import get_logger
from orchestral.core.metrics import metrics
from orchestral.models.chat import (
    ChatRequest,
    ChatResponse,
    ChatSession,
    SessionDeletedResponse,
    SourcesResponse,
)
from orchestral.models.stream import StreamEvent
from orchestral.services.chat_service import ChatService, get_chat_service

logger = get_logger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


def _require_message(request: ChatRequest) -> str:
    message = (request.message or "").strip()
    if not message:
        raise InvalidRequestError("Message is required")
    return message


@router.post("", response_model=ChatResponse, response_model_by_alias=True)
async def chat(
    request: ChatRequest,
    service: ChatService = Depends(get_chat_service),
):
    """
    Answer a message with a cited response.

    Plans which knowledge sources to query, queries them and synthesizes
    the answer. Errors are raised as AppError and rendered by the
    application's exception handler.
    """
    message = _require_message(request)
    return await service.chat(message, request.session_id)


@router.post("/stream")
async def chat_stream(
    request: ChatRequest,
    service: ChatService = Depends(get_chat_service),
):
    """
    Answer a message with streaming progress updates.

    Event Types:
        - planning: Plan is being created, then the finished plan
        - querying: A knowledge source started or completed
        - citation: One pooled citation with its [n] index
        - synthesizing: Answer generation has begun
        - content: Next chunk of the answer
        - done: The stored assistant message
        - error: An error occurred

    Returns:
        StreamingResponse with SSE events
    """
    message = _require_message(request)

    async def event_generator():
        """Generate Server-Sent Events for the chat turn."""
        events = service.chat_stream(message, request.session_id)
        try:
            async for event in events:
                yield event.to_sse()
        except Exception as e:
            logger.error(f"Stream error: {e}", exc_info=True)
            metrics.record_error(type(e).__name__, stage="stream")
            yield StreamEvent.error(str(e)).to_sse()
        finally:
            await events.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.get("/sources", response_model=SourcesResponse, response_model_by_alias=True)
async def list_sources(service: ChatService = Depends(get_chat_service)):
    """Knowledge sources that are currently available."""
    return SourcesResponse(sources=await service.get_available_sources_filtered())


@router.get("/session/{session_id}", response_model=ChatSession, response_model_by_alias=True)
async def get_session(session_id: str, service: ChatService = Depends(get_chat_service)):
    session = service.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    return session


@router.delete(
    "/session/{session_id}",
    response_model=SessionDeletedResponse,
    response_model_by_alias=True,
)
async def delete_session(session_id: str, service: ChatService = Depends(get_chat_service)):
    if not service.delete_session(session_id):
        raise SessionNotFoundError(session_id)
    return SessionDeletedResponse(deleted=True)
