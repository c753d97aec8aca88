"""
Base knowledge source class.

Each knowledge source should inherit from this class and define its own:
- Metadata (id, name, description, capabilities, example queries, priority)
- An availability probe
- The query handler `_run_query`

To add a new source:
1. Create a new file in orchestral/sources/ (e.g., github_issues.py)
2. Create a class that inherits from KnowledgeSource
3. Implement `metadata` and `_run_query`
4. Register it in orchestral/sources/__init__.py
"""

import time
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple

from orchestral.core.logging import get_logger
from orchestral.models.knowledge import (
    Citation,
    KnowledgeSourceMetadata,
    KnowledgeSourceResult,
    QueryContext,
)

logger = get_logger(__name__)

# What a query handler produces before it is wrapped into a result
HandlerOutput = Tuple[Any, List[Citation]]


class KnowledgeSource(ABC):
    """
    A pluggable data provider the chat pipeline can query.

    `query` never raises: whatever goes wrong inside `_run_query` is
    turned into a result carrying `error`, so one failing source can't
    abort a plan.
    """

    @property
    @abstractmethod
    def metadata(self) -> KnowledgeSourceMetadata:
        """Return source metadata shown to the planner."""
        pass

    @property
    def id(self) -> str:
        return self.metadata.id

    async def is_available(self) -> bool:
        """
        Whether the source can answer right now.

        Override `_check_available` to probe a remote dependency; any
        exception raised there is reported as unavailable.
        """
        try:
            return bool(await self._check_available())
        except Exception as e:
            logger.warning(
                f"Availability check failed for {self.id}: {e}",
                extra={"source_id": self.id, "error_type": type(e).__name__},
            )
            return False

    async def _check_available(self) -> bool:
        return True

    async def query(self, context: QueryContext) -> KnowledgeSourceResult:
        """Run the query and wrap its output into a result."""
        start = time.perf_counter()
        try:
            data, citations = await self._run_query(context)
        except Exception as e:
            logger.error(
                f"Query failed for {self.id}: {e}",
                extra={
                    "source_id": self.id,
                    "error_type": type(e).__name__,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                },
            )
            return KnowledgeSourceResult.failure(self.id, str(e) or type(e).__name__)

        return KnowledgeSourceResult(source_id=self.id, data=data, citations=citations)

    @abstractmethod
    async def _run_query(self, context: QueryContext) -> HandlerOutput:
        """
        Answer one query.

        Returns:
            (data, citations): `data` is any JSON-serializable payload
            shown to the synthesizer, `citations` the entities it cites.
        """
        pass

    @staticmethod
    def dedupe_citations(citations: List[Citation]) -> List[Citation]:
        """Keep the first citation for each entity id."""
        seen = set()
        unique = []
        for citation in citations:
            if citation.id in seen:
                continue
            seen.add(citation.id)
            unique.append(citation)
        return unique

    @staticmethod
    def truncate(text: Optional[str], max_length: int, suffix: str = "...") -> str:
        """Cut text to max_length characters, suffix included."""
        if not text:
            return ""
        if len(text) <= max_length:
            return text
        return text[: max_length - len(suffix)] + suffix
