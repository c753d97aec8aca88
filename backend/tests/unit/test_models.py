"""
Unit tests for wire models, stream events and the source base class.
"""

import json

import pydantic
import pytest

from orchestral.models.chat import ChatMessage
from orchestral.models.knowledge import (
    KnowledgeSourceResult,
    QueryContext,
    QueryPhase,
    QueryPlan,
    SourceSelection,
)
from orchestral.models.stream import StreamEvent
from orchestral.sources.base import KnowledgeSource
from support import StubSource, make_citation


class TestWireFormat:
    def test_citation_uses_camel_case_and_keeps_nulls(self):
        wire = make_citation("X-1").to_wire()

        assert wire["sourceId"] == "jira-issues"
        assert wire["url"] is None
        assert "source_id" not in wire

    def test_plan_round_trip_from_camel_case(self):
        plan = QueryPlan.model_validate(
            {
                "phases": [
                    {"phase": 1, "sources": [{"sourceId": "jira-issues"}], "waitForPrevious": False}
                ],
                "reasoning": "r",
            }
        )

        assert plan.source_ids == ["jira-issues"]
        assert plan.to_wire()["phases"][0]["waitForPrevious"] is False

    def test_phase_numbers_start_at_one(self):
        with pytest.raises(pydantic.ValidationError):
            QueryPhase(phase=0, sources=[SourceSelection(source_id="a")])

    def test_chat_message_is_immutable(self):
        message = ChatMessage(role="user", content="hi")

        assert message.id
        with pytest.raises(pydantic.ValidationError):
            message.content = "edited"

    def test_failure_result(self):
        result = KnowledgeSourceResult.failure("slack-messages", "timeout")

        assert result.failed
        assert result.data is None
        assert result.citations == []


class TestStreamEvent:
    def test_sse_line(self):
        line = StreamEvent.content("Hello").to_sse()

        assert line.startswith("data: ")
        assert line.endswith("\n\n")
        assert json.loads(line[len("data: "):]) == {"type": "content", "data": {"delta": "Hello"}}

    def test_citation_event(self):
        event = StreamEvent.citation(make_citation("X-1"), 1)

        assert event.data["index"] == 1
        assert event.data["citation"]["sourceId"] == "jira-issues"

    def test_querying_event(self):
        event = StreamEvent.querying("jira-issues", "completed")

        assert event.data == {"sourceId": "jira-issues", "status": "completed"}

    def test_done_event_carries_message(self):
        message = ChatMessage(role="assistant", content="ok", citations=[])
        event = StreamEvent.done(message)

        assert event.data["message"]["id"] == message.id
        assert event.data["message"]["role"] == "assistant"


class TestKnowledgeSourceBase:
    def test_dedupe_keeps_first(self):
        citations = [
            make_citation("A", title="first"),
            make_citation("B"),
            make_citation("A", title="second"),
        ]

        deduped = KnowledgeSource.dedupe_citations(citations)

        assert [(c.id, c.title) for c in deduped] == [("A", "first"), ("B", "[B] Test issue")]

    def test_truncate(self):
        assert KnowledgeSource.truncate("abcdef", 10) == "abcdef"
        assert KnowledgeSource.truncate("abcdefghijkl", 8) == "abcde..."
        assert KnowledgeSource.truncate(None, 8) == ""

    @pytest.mark.asyncio
    async def test_availability_probe_errors_mean_unavailable(self):
        assert await StubSource("a", available=RuntimeError("dns")).is_available() is False

    @pytest.mark.asyncio
    async def test_query_errors_become_results(self):
        result = await StubSource("a", error=KeyError("k")).query(
            QueryContext(query="anything", session_id="session-1")
        )

        assert result.source_id == "a"
        assert result.error == "'k'"

