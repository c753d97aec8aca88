"""
Execution Engine - runs a query plan against the knowledge sources.

Phases run one after another; the sources of a phase run concurrently.
Each source call is isolated so that a missing or failing source only
produces an error result in its own slot.
"""

import asyncio
import time
from typing import Callable, List, Mapping, Optional

from orchestral.core.exceptions import SourceNotFoundError
from orchestral.core.logging import get_logger, perf_logger, set_source_context
from orchestral.core.metrics import metrics
from orchestral.models.knowledge import (
    Citation,
    ExecutionResult,
    ExecutionTiming,
    KnowledgeSourceResult,
    PhaseTiming,
    QueryContext,
    QueryPlan,
    SourceSelection,
)
from orchestral.sources.base import KnowledgeSource

logger = get_logger(__name__)

SourceStartHook = Callable[[str], None]
SourceCompleteHook = Callable[[str, KnowledgeSourceResult], None]


class ExecutionEngine:
    """Executes query plans phase by phase."""

    def __init__(self, sources: Mapping[str, KnowledgeSource]):
        # Shared with the chat service, so registrations are seen immediately
        self.sources = sources

    async def execute(
        self,
        plan: QueryPlan,
        base_context: QueryContext,
        on_source_start: Optional[SourceStartHook] = None,
        on_source_complete: Optional[SourceCompleteHook] = None,
    ) -> ExecutionResult:
        """
        Execute every phase of the plan.

        Args:
            plan: Validated query plan
            base_context: Query and session shared by all source calls
            on_source_start: Called with the source id before each call
            on_source_complete: Called with the source id and result after each call

        Returns:
            ExecutionResult with results and citations in invocation order
        """
        start_time = time.time() * 1000
        results: List[KnowledgeSourceResult] = []
        citations: List[Citation] = []
        phase_timings: List[PhaseTiming] = []
        previous: List[KnowledgeSourceResult] = []

        for phase in plan.phases:
            phase_start = time.perf_counter()
            phase_context = base_context.model_copy(
                update={"previous_results": list(previous) if phase.wait_for_previous else None}
            )

            phase_results = await asyncio.gather(
                *(
                    self._run_source(selection, phase_context, on_source_start, on_source_complete)
                    for selection in phase.sources
                )
            )

            for result in phase_results:
                results.append(result)
                citations.extend(result.citations)
            previous = list(phase_results)

            duration_ms = (time.perf_counter() - phase_start) * 1000
            phase_timings.append(PhaseTiming(phase=phase.phase, duration_ms=duration_ms))
            perf_logger.log_phase(phase.phase, len(phase.sources), duration_ms)

        return ExecutionResult(
            results=results,
            citations=citations,
            timing=ExecutionTiming(
                start_time=start_time,
                end_time=time.time() * 1000,
                phase_timings=phase_timings,
            ),
        )

    async def _run_source(
        self,
        selection: SourceSelection,
        phase_context: QueryContext,
        on_start: Optional[SourceStartHook],
        on_complete: Optional[SourceCompleteHook],
    ) -> KnowledgeSourceResult:
        source_id = selection.source_id
        source = self.sources.get(source_id)
        if source is None:
            error = SourceNotFoundError(source_id)
            logger.warning(f"Plan references unknown source: {source_id}")
            metrics.record_error(type(error).__name__, stage="execution")
            return KnowledgeSourceResult.failure(source_id, error.message)

        # Runs in its own task, so the logging context stays local to this call
        set_source_context(source_id)
        context = phase_context
        if selection.filters is not None:
            context = phase_context.model_copy(update={"filters": selection.filters})

        self._fire(on_start, source_id)
        start = time.perf_counter()
        try:
            result = await source.query(context)
        except Exception as e:
            logger.error(
                f"Source {source_id} raised: {e}",
                extra={"error_type": type(e).__name__},
            )
            result = KnowledgeSourceResult.failure(source_id, str(e) or type(e).__name__)

        if not isinstance(result, KnowledgeSourceResult):
            logger.error(f"Source {source_id} returned {type(result).__name__}, expected a result")
            result = KnowledgeSourceResult.failure(source_id, "Invalid result from source")

        duration = time.perf_counter() - start
        success = result.error is None
        perf_logger.log_source_query(source_id, duration * 1000, len(result.citations), success)
        metrics.record_source_query(source_id, success, duration)

        self._fire(on_complete, source_id, result)
        return result

    @staticmethod
    def _fire(hook: Optional[Callable], *args) -> None:
        if hook is None:
            return
        try:
            hook(*args)
        except Exception as e:
            logger.warning(
                f"Execution hook failed: {e}",
                extra={"error_type": type(e).__name__},
            )
