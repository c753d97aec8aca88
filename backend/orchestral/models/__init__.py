"""Data models."""

# Export knowledge source and planning models
from orchestral.models.knowledge import (
    Citation,
    CitationType,
    ExecutionResult,
    ExecutionTiming,
    KnowledgeSourceMetadata,
    KnowledgeSourceResult,
    PhaseTiming,
    QueryContext,
    QueryPhase,
    QueryPlan,
    SourceSelection,
    SynthesizedResponse,
)

# Export chat models
from orchestral.models.chat import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatSession,
    SessionDeletedResponse,
    SourcesResponse,
)

from orchestral.models.stream import StreamEvent
