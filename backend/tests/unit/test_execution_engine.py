"""
Unit tests for the execution engine.
"""

import pytest

from orchestral.core.metrics import metrics
from orchestral.models.knowledge import (
    QueryContext,
    QueryPhase,
    QueryPlan,
    SourceSelection,
)
from orchestral.services.execution_engine import ExecutionEngine
from support import StubSource, make_citation


class SyncRaisingSource(StubSource):
    """Source whose query raises before returning an awaitable."""

    def query(self, context):
        raise RuntimeError("exploded synchronously")


class NoneReturningSource(StubSource):
    """Source whose query returns nothing instead of a result."""

    async def query(self, context):
        return None


def phase(number: int, *source_ids: str, wait: bool = False, filters=None) -> QueryPhase:
    return QueryPhase(
        phase=number,
        sources=[SourceSelection(source_id=sid, filters=filters) for sid in source_ids],
        wait_for_previous=wait,
    )


CONTEXT = QueryContext(query="What is blocked?", session_id="session-1")


class TestExecute:
    """Tests for ExecutionEngine.execute."""

    @pytest.mark.asyncio
    async def test_failing_source_does_not_abort_phase(self):
        sources = {
            "a": StubSource("a", data={"n": 1}, citations=[make_citation("A-1", source_id="a")]),
            "b": SyncRaisingSource("b"),
            "c": StubSource("c", data={"n": 3}),
        }
        plan = QueryPlan(phases=[phase(1, "a", "b", "c")])

        execution = await ExecutionEngine(sources).execute(plan, CONTEXT)

        assert [r.source_id for r in execution.results] == ["a", "b", "c"]
        assert execution.results[0].data == {"n": 1}
        assert execution.results[1].error == "exploded synchronously"
        assert execution.results[1].citations == []
        assert execution.results[2].data == {"n": 3}
        assert [c.id for c in execution.citations] == ["A-1"]

    @pytest.mark.asyncio
    async def test_invalid_result_does_not_abort_phase(self):
        completed = []
        sources = {"none": NoneReturningSource("none"), "good": StubSource("good", data={"n": 1})}
        plan = QueryPlan(phases=[phase(1, "none", "good")])

        execution = await ExecutionEngine(sources).execute(
            plan, CONTEXT, on_source_complete=lambda sid, result: completed.append(sid)
        )

        assert [r.source_id for r in execution.results] == ["none", "good"]
        assert execution.results[0].error == "Invalid result from source"
        assert execution.results[1].data == {"n": 1}
        assert sorted(completed) == ["good", "none"]

    @pytest.mark.asyncio
    async def test_source_error_is_captured(self):
        sources = {"a": StubSource("a", error=ValueError("bad query"))}
        execution = await ExecutionEngine(sources).execute(
            QueryPlan(phases=[phase(1, "a")]), CONTEXT
        )

        assert execution.results[0].error == "bad query"
        assert execution.results[0].data is None

    @pytest.mark.asyncio
    async def test_unknown_source(self):
        started = []
        execution = await ExecutionEngine({}).execute(
            QueryPlan(phases=[phase(1, "ghost")]),
            CONTEXT,
            on_source_start=started.append,
        )

        assert execution.results[0].error == "Source ghost not found"
        assert started == []
        assert metrics.errors_total.get(error_type="SourceNotFoundError", stage="execution") >= 1

    @pytest.mark.asyncio
    async def test_waiting_phase_sees_previous_results(self):
        first = StubSource("first", data={"step": 1})
        second = StubSource("second", data={"step": 2})
        plan = QueryPlan(phases=[phase(1, "first"), phase(2, "second", wait=True)])

        execution = await ExecutionEngine({"first": first, "second": second}).execute(plan, CONTEXT)

        assert first.contexts[0].previous_results is None
        previous = second.contexts[0].previous_results
        assert previous == [execution.results[0]]
        assert len(execution.timing.phase_timings) == 2
        assert execution.timing.end_time >= execution.timing.start_time

    @pytest.mark.asyncio
    async def test_independent_phase_gets_no_previous_results(self):
        first = StubSource("first", data=1)
        second = StubSource("second", data=2)
        plan = QueryPlan(phases=[phase(1, "first"), phase(2, "second", wait=False)])

        await ExecutionEngine({"first": first, "second": second}).execute(plan, CONTEXT)

        assert second.contexts[0].previous_results is None

    @pytest.mark.asyncio
    async def test_filters_are_passed_to_source(self):
        jira = StubSource("jira-issues", data=[])
        plan = QueryPlan(phases=[phase(1, "jira-issues", filters={"status": "Blocked"})])

        await ExecutionEngine({"jira-issues": jira}).execute(plan, CONTEXT)

        assert jira.contexts[0].filters == {"status": "Blocked"}
        assert jira.contexts[0].query == "What is blocked?"

    @pytest.mark.asyncio
    async def test_citations_keep_invocation_order(self):
        sources = {
            "a": StubSource("a", data=1, citations=[make_citation("A-1"), make_citation("A-2")]),
            "b": StubSource("b", data=2, citations=[make_citation("B-1")]),
        }
        plan = QueryPlan(phases=[phase(1, "a"), phase(2, "b", wait=True)])

        execution = await ExecutionEngine(sources).execute(plan, CONTEXT)

        assert [c.id for c in execution.citations] == ["A-1", "A-2", "B-1"]

    @pytest.mark.asyncio
    async def test_hooks_fire_and_hook_errors_are_ignored(self):
        events = []

        def on_start(source_id):
            events.append(("started", source_id))
            raise RuntimeError("hook failure")

        def on_complete(source_id, result):
            events.append(("completed", source_id))

        execution = await ExecutionEngine({"a": StubSource("a", data=1)}).execute(
            QueryPlan(phases=[phase(1, "a")]),
            CONTEXT,
            on_source_start=on_start,
            on_source_complete=on_complete,
        )

        assert events == [("started", "a"), ("completed", "a")]
        assert execution.results[0].data == 1

    @pytest.mark.asyncio
    async def test_empty_plan(self):
        execution = await ExecutionEngine({}).execute(QueryPlan(), CONTEXT)

        assert execution.results == []
        assert execution.citations == []
