"""Chat models."""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from orchestral.core.security import generate_message_id, generate_session_id
from orchestral.models.knowledge import CamelModel, Citation, KnowledgeSourceMetadata


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessage(CamelModel):
    """Chat message model. Messages are never edited once created."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=generate_message_id)
    role: Literal["user", "assistant"] = Field(..., description="Message role: 'user' or 'assistant'")
    content: str = Field(..., description="Message content")
    citations: Optional[List[Citation]] = Field(
        None, description="Citations referenced by an assistant message"
    )
    timestamp: datetime = Field(default_factory=utc_now)


class ChatSession(CamelModel):
    """A conversation: an append-only list of messages."""

    id: str = Field(default_factory=generate_session_id)
    messages: List[ChatMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# ============ API bodies ============


class ChatRequest(CamelModel):
    """Chat request model."""

    session_id: Optional[str] = Field(None, description="Session ID for conversation history")

    # Blank messages are rejected by the route with a 400
    message: Optional[str] = Field(None, description="User message")


class ChatResponse(CamelModel):
    """Chat response model."""

    message: ChatMessage = Field(..., description="Assistant message")
    sources: List[str] = Field(default_factory=list, description="Source ids from the plan")
    execution_time: float = Field(..., description="Pipeline duration in milliseconds")


class SourcesResponse(CamelModel):
    sources: List[KnowledgeSourceMetadata] = Field(default_factory=list)


class SessionDeletedResponse(CamelModel):
    deleted: bool = True
