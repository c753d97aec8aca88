"""
Query Planner - decides which knowledge sources answer a question.

Asks the LLM for an execution plan (phases of sources), then validates
it against the sources that are actually available. The planner never
fails: anything unusable becomes a fallback plan that queries every
available source at once.
"""

import json
import time
from typing import Any, Dict, List, Optional

from orchestral.core.config import settings
from orchestral.core.logging import get_logger, perf_logger
from orchestral.core.metrics import metrics
from orchestral.models.knowledge import (
    KnowledgeSourceMetadata,
    QueryPhase,
    QueryPlan,
    SourceSelection,
)
from orchestral.services.claude_client import LLMClient
from orchestral.services.prompt_service import PromptService, prompt_service

logger = get_logger(__name__)

FALLBACK_REASON = "Fallback: querying all available sources"
FALLBACK_REASONING = "Fallback plan: querying all sources in parallel"
NO_SOURCES_REASONING = "No knowledge sources available"
DEFAULT_REASONING = "Plan created by query planner"


def extract_json_object(text: str) -> str:
    """
    Return the first balanced `{...}` substring of text.

    Braces inside JSON strings are ignored, so prose or code fences
    around the object don't matter.

    Raises:
        ValueError: If no complete object is found
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for pos in range(start, len(text)):
            char = text[pos]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
            elif char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : pos + 1]
        # Unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    raise ValueError("No JSON object found in planner response")


class QueryPlanner:
    """Creates query plans with the LLM."""

    def __init__(self, llm_client: LLMClient, prompts: Optional[PromptService] = None):
        self.llm_client = llm_client
        self.prompts = prompts or prompt_service

    async def create_plan(
        self,
        query: str,
        available_sources: List[KnowledgeSourceMetadata],
    ) -> QueryPlan:
        """
        Build a plan for the query over the given sources.

        Args:
            query: The user's question
            available_sources: Metadata of sources that passed the availability probe

        Returns:
            A validated QueryPlan (possibly empty, possibly the fallback plan)
        """
        if not available_sources:
            return QueryPlan(phases=[], reasoning=NO_SOURCES_REASONING)

        start = time.perf_counter()
        try:
            response = await self.llm_client.complete(
                messages=[{"role": "user", "content": query}],
                system_prompt=self.prompts.planner_prompt(available_sources),
                max_tokens=settings.llm_max_tokens_planning,
                temperature=settings.llm_temperature_planning,
                purpose="planning",
            )
        except Exception as e:
            logger.error(
                f"Planner LLM call failed, using fallback plan: {e}",
                extra={"error_type": type(e).__name__},
            )
            metrics.record_error(type(e).__name__, stage="planning")
            return self._finish(self.create_fallback_plan(available_sources), True, start)

        try:
            plan = self.parse_response(response, available_sources)
        except Exception as e:
            logger.warning(
                f"Failed to parse planner response: {e}",
                extra={"error_type": type(e).__name__, "response_preview": response[:200]},
            )
            return self._finish(self.create_fallback_plan(available_sources), True, start)

        return self._finish(plan, False, start)

    def parse_response(
        self,
        response: str,
        available_sources: List[KnowledgeSourceMetadata],
    ) -> QueryPlan:
        """
        Parse and validate the LLM's plan.

        Raises:
            ValueError: If the response holds no usable plan
        """
        parsed = json.loads(extract_json_object(response))
        if not isinstance(parsed, dict) or not isinstance(parsed.get("phases"), list):
            raise ValueError("Planner response has no phases array")

        known_ids = {s.id for s in available_sources}
        proposed = 0
        phases: List[QueryPhase] = []

        for raw_phase in parsed["phases"]:
            raw_sources = raw_phase.get("sources") if isinstance(raw_phase, dict) else None
            if not isinstance(raw_sources, list):
                continue

            selections = []
            for raw in raw_sources:
                if not isinstance(raw, dict):
                    continue
                proposed += 1
                selection = self._to_selection(raw, known_ids)
                if selection is not None:
                    selections.append(selection)

            if not selections:
                continue

            index = len(phases)
            phases.append(
                QueryPhase(phase=index + 1, sources=selections, wait_for_previous=index > 0)
            )

        if proposed and not phases:
            raise ValueError("None of the proposed sources are available")

        reasoning = parsed.get("reasoning")
        if not isinstance(reasoning, str) or not reasoning:
            reasoning = DEFAULT_REASONING
        return QueryPlan(phases=phases, reasoning=reasoning)

    @staticmethod
    def _to_selection(raw: Dict[str, Any], known_ids: set) -> Optional[SourceSelection]:
        source_id = raw.get("sourceId")
        if not isinstance(source_id, str) or source_id not in known_ids:
            if source_id is not None:
                logger.debug(f"Dropping unknown source from plan: {source_id}")
            return None
        filters = raw.get("filters")
        reason = raw.get("reason")
        return SourceSelection(
            source_id=source_id,
            reason=reason if isinstance(reason, str) else "",
            filters=filters if isinstance(filters, dict) else None,
        )

    @staticmethod
    def create_fallback_plan(sources: List[KnowledgeSourceMetadata]) -> QueryPlan:
        """One phase querying every source, lowest priority value first."""
        ordered = sorted(sources, key=lambda s: s.priority)
        return QueryPlan(
            phases=[
                QueryPhase(
                    phase=1,
                    sources=[SourceSelection(source_id=s.id, reason=FALLBACK_REASON) for s in ordered],
                    wait_for_previous=False,
                )
            ],
            reasoning=FALLBACK_REASONING,
        )

    @staticmethod
    def _finish(plan: QueryPlan, fallback: bool, start: float) -> QueryPlan:
        perf_logger.log_plan(
            phases=len(plan.phases),
            sources=plan.source_ids,
            fallback=fallback,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
        return plan
