"""
Server-sent event model for streamed chat responses.

Each event is written as one `data: {"type": ..., "data": ...}` line.
"""

import json
from typing import Any, Dict, Literal

from pydantic import BaseModel, Field

from orchestral.models.chat import ChatMessage
from orchestral.models.knowledge import Citation, QueryPlan


StreamEventType = Literal[
    "planning",
    "querying",
    "synthesizing",
    "citation",
    "content",
    "done",
    "error",
]


class StreamEvent(BaseModel):
    """
    One event of the chat stream.

    Event payloads:
    - planning: {"status": "started"} then {"plan": QueryPlan}
    - querying: {"sourceId": str, "status": "started" | "completed"}
    - synthesizing: {}
    - citation: {"citation": Citation, "index": int}  (1-based)
    - content: {"delta": str}
    - done: {"message": ChatMessage}
    - error: {"error": str}
    """

    type: StreamEventType = Field(..., description="Event type")
    data: Dict[str, Any] = Field(default_factory=dict, description="Type-specific payload")

    @classmethod
    def planning_started(cls) -> "StreamEvent":
        return cls(type="planning", data={"status": "started"})

    @classmethod
    def planning(cls, plan: QueryPlan) -> "StreamEvent":
        return cls(type="planning", data={"plan": plan.to_wire()})

    @classmethod
    def querying(cls, source_id: str, status: Literal["started", "completed"]) -> "StreamEvent":
        return cls(type="querying", data={"sourceId": source_id, "status": status})

    @classmethod
    def synthesizing(cls) -> "StreamEvent":
        return cls(type="synthesizing", data={})

    @classmethod
    def citation(cls, citation: Citation, index: int) -> "StreamEvent":
        return cls(type="citation", data={"citation": citation.to_wire(), "index": index})

    @classmethod
    def content(cls, delta: str) -> "StreamEvent":
        return cls(type="content", data={"delta": delta})

    @classmethod
    def done(cls, message: ChatMessage) -> "StreamEvent":
        return cls(type="done", data={"message": message.to_wire()})

    @classmethod
    def error(cls, error: str) -> "StreamEvent":
        return cls(type="error", data={"error": error})

    def to_sse(self) -> str:
        """Format as a server-sent event line."""
        return f"data: {json.dumps(self.model_dump(mode='json'))}\n\n"
