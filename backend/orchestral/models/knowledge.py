"""
Knowledge source, planning and execution models.

These models describe the data flowing through one chat request:
source metadata, the plan produced by the query planner, the
per-source results gathered by the execution engine and the
synthesized answer.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


CitationType = Literal["jira-issue", "confluence-page", "document", "web", "custom"]


class CamelModel(BaseModel):
    """Base model serialized with camelCase field names on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


# ============ Knowledge Sources ============


class KnowledgeSourceMetadata(CamelModel):
    """
    Static description of a knowledge source.

    The planner shows this to the LLM so it can decide which sources
    are relevant for a question.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(..., description="Stable source identifier")
    name: str = Field(..., description="Display name")
    description: str = Field(..., description="What the source contains")
    capabilities: List[str] = Field(default_factory=list)
    example_queries: List[str] = Field(default_factory=list)

    # Lower is queried first when no explicit ordering applies
    priority: int = Field(100, description="Ordering hint for fallback plans")


class Citation(CamelModel):
    """A verifiable reference to one entity returned by a source."""

    source_id: str = Field(..., description="Source that produced the citation")
    type: CitationType = Field(..., description="Kind of cited entity")
    id: str = Field(..., description="Natural key of the cited entity")
    title: str
    url: Optional[str] = None
    snippet: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class KnowledgeSourceResult(CamelModel):
    """Outcome of one source invocation. A failed call carries `error`."""

    source_id: str
    data: Any = None
    citations: List[Citation] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def failure(cls, source_id: str, error: str) -> "KnowledgeSourceResult":
        """Error result: no data, no citations."""
        return cls(source_id=source_id, data=None, citations=[], error=error)


class QueryContext(CamelModel):
    """Input handed to a source for one invocation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    query: str
    session_id: str
    filters: Optional[Dict[str, Any]] = None

    # Only set when the phase waits on the previous one
    previous_results: Optional[List[KnowledgeSourceResult]] = None


# ============ Query Planning ============


class SourceSelection(CamelModel):
    """One source chosen by the planner, with its justification."""

    source_id: str
    reason: str = ""
    filters: Optional[Dict[str, Any]] = None


class QueryPhase(CamelModel):
    """A group of sources queried concurrently."""

    phase: int = Field(..., ge=1, description="1-based phase number")
    sources: List[SourceSelection] = Field(default_factory=list)
    wait_for_previous: bool = False


class QueryPlan(CamelModel):
    """Ordered phases of source calls plus the planner's reasoning."""

    phases: List[QueryPhase] = Field(default_factory=list)
    reasoning: str = ""

    @property
    def source_ids(self) -> List[str]:
        """Flattened source ids in phase order."""
        return [s.source_id for phase in self.phases for s in phase.sources]

    @property
    def is_empty(self) -> bool:
        return not self.phases


# ============ Execution ============


class PhaseTiming(CamelModel):
    phase: int
    duration_ms: float


class ExecutionTiming(CamelModel):
    """Wall-clock timing of one plan execution (epoch milliseconds)."""

    start_time: float
    end_time: float
    phase_timings: List[PhaseTiming] = Field(default_factory=list)


class ExecutionResult(CamelModel):
    """
    Aggregate outcome of executing a plan.

    `results` holds one entry per source invocation and `citations`
    concatenates their citations, both in invocation order. The position
    of a citation in this list (1-based) is its `[n]` index.
    """

    results: List[KnowledgeSourceResult] = Field(default_factory=list)
    citations: List[Citation] = Field(default_factory=list)
    timing: ExecutionTiming


# ============ Synthesis ============


class SynthesizedResponse(CamelModel):
    """Answer text and the pooled citations it actually references."""

    content: str
    citations: List[Citation] = Field(default_factory=list)
