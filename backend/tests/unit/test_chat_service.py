"""
Unit tests for the chat service pipeline.
"""

import pytest

from orchestral.core.exceptions import SynthesisError
from orchestral.services.chat_service import ChatService
from support import StubLLM, StubSource, plan_json


class RaisingProbeSource(StubSource):
    """Source whose availability check itself raises."""

    async def is_available(self) -> bool:
        raise ConnectionError("probe crashed")


class TestSourceRegistry:
    """Tests for registering and probing sources."""

    @pytest.mark.asyncio
    async def test_filtered_sources_exclude_unavailable(self, history):
        service = ChatService(
            llm_client=StubLLM(),
            sources=[
                StubSource("up", available=True),
                StubSource("down", available=False),
                StubSource("broken", available=RuntimeError("probe failed")),
            ],
            history=history,
        )

        assert [m.id for m in service.get_available_sources()] == ["up", "down", "broken"]
        assert [m.id for m in await service.get_available_sources_filtered()] == ["up"]

    @pytest.mark.asyncio
    async def test_raising_probe_excludes_source_from_turn(self, history):
        crashing = RaisingProbeSource("crashing", data={"n": 0})
        healthy = StubSource("healthy", data={"n": 1})
        llm = StubLLM(plan_response=plan_json(["crashing", "healthy"]), answer="Done.")
        service = ChatService(llm_client=llm, sources=[crashing, healthy], history=history)

        assert [m.id for m in await service.get_available_sources_filtered()] == ["healthy"]

        response = await service.chat("What changed?")

        assert response.sources == ["healthy"]
        assert crashing.contexts == []
        assert len(healthy.contexts) == 1

    def test_register_replaces_and_unregister_removes(self, history):
        service = ChatService(llm_client=StubLLM(), history=history)
        service.register_source(StubSource("jira-issues", data=1))
        replacement = StubSource("jira-issues", data=2)
        service.register_source(replacement)

        assert service.sources == {"jira-issues": replacement}
        assert service.engine.sources is service.sources

        service.unregister_source("jira-issues")
        service.unregister_source("never-registered")
        assert service.sources == {}


class TestChat:
    """Tests for the one-shot pipeline."""

    @pytest.mark.asyncio
    async def test_blocked_question_end_to_end(self, chat_service):
        response = await chat_service.chat("What is blocked?", "session-1")

        assert "[1]" in response.message.content
        assert response.message.role == "assistant"
        assert [c.id for c in response.message.citations] == ["X-1"]
        assert response.sources == ["jira-issues"]
        assert response.execution_time >= 0

        session = chat_service.get_session("session-1")
        assert [m.role for m in session.messages] == ["user", "assistant"]
        assert session.messages[0].content == "What is blocked?"

    @pytest.mark.asyncio
    async def test_new_session_is_created_without_id(self, chat_service):
        await chat_service.chat("What is blocked?")

        assert len(chat_service.history) == 1

    @pytest.mark.asyncio
    async def test_synthesis_failure_stores_no_answer(self, blocked_source, history):
        llm = StubLLM(plan_response=plan_json(["jira-issues"]), synthesis_error=RuntimeError("down"))
        service = ChatService(llm_client=llm, sources=[blocked_source], history=history)

        with pytest.raises(SynthesisError):
            await service.chat("What is blocked?", "session-1")

        assert [m.role for m in service.get_session("session-1").messages] == ["user"]

    @pytest.mark.asyncio
    async def test_no_available_sources_still_answers(self, history):
        llm = StubLLM(answer="I have no sources to check.")
        service = ChatService(
            llm_client=llm,
            sources=[StubSource("down", available=False)],
            history=history,
        )

        response = await service.chat("Hello?", "session-1")

        assert response.sources == []
        assert response.message.citations == []
        # Only the synthesizer ran; the planner short-circuits
        assert len(llm.calls) == 1

    def test_delete_session(self, chat_service):
        chat_service.history.get_or_create("session-1")

        assert chat_service.delete_session("session-1") is True
        assert chat_service.delete_session("session-1") is False
        assert chat_service.get_session("session-1") is None


class TestChatStream:
    """Tests for the streaming pipeline."""

    @pytest.mark.asyncio
    async def test_event_order(self, chat_service):
        events = [e async for e in chat_service.chat_stream("What is blocked?", "session-1")]

        assert [e.type for e in events] == [
            "planning",
            "planning",
            "querying",
            "querying",
            "citation",
            "synthesizing",
            "content",
            "content",
            "done",
        ]
        assert events[0].data == {"status": "started"}
        assert events[1].data["plan"]["phases"][0]["sources"][0]["sourceId"] == "jira-issues"
        assert events[2].data == {"sourceId": "jira-issues", "status": "started"}
        assert events[3].data == {"sourceId": "jira-issues", "status": "completed"}
        assert events[4].data["index"] == 1
        assert events[4].data["citation"]["id"] == "X-1"
        assert "".join(e.data["delta"] for e in events[6:8]) == "X-1 is blocked [1]."

        done = events[-1].data["message"]
        assert done["role"] == "assistant"
        assert done["content"] == "X-1 is blocked [1]."
        assert [c["id"] for c in done["citations"]] == ["X-1"]

        session = chat_service.get_session("session-1")
        assert session.messages[-1].id == done["id"]

    @pytest.mark.asyncio
    async def test_abort_after_synthesizing_stores_no_answer(self, chat_service):
        stream = chat_service.chat_stream("What is blocked?", "session-1")
        async for event in stream:
            if event.type == "synthesizing":
                break
        await stream.aclose()

        assert [m.role for m in chat_service.get_session("session-1").messages] == ["user"]

    @pytest.mark.asyncio
    async def test_abort_during_content_stores_no_answer(self, chat_service):
        stream = chat_service.chat_stream("What is blocked?", "session-1")
        async for event in stream:
            if event.type == "content":
                break
        await stream.aclose()

        assert [m.role for m in chat_service.get_session("session-1").messages] == ["user"]

    @pytest.mark.asyncio
    async def test_synthesis_failure_ends_with_error_event(self, blocked_source, history):
        llm = StubLLM(plan_response=plan_json(["jira-issues"]), synthesis_error=RuntimeError("down"))
        service = ChatService(llm_client=llm, sources=[blocked_source], history=history)

        events = [e async for e in service.chat_stream("What is blocked?", "session-1")]

        assert events[-1].type == "error"
        assert events[-1].data == {"error": "Failed to synthesize a response"}
        assert "done" not in [e.type for e in events]
        assert [m.role for m in service.get_session("session-1").messages] == ["user"]

    @pytest.mark.asyncio
    async def test_failing_source_still_completes(self, history):
        llm = StubLLM(plan_response=plan_json(["jira-issues"]), answer="Jira is unavailable.")
        service = ChatService(
            llm_client=llm,
            sources=[StubSource("jira-issues", error=RuntimeError("401 Unauthorized"))],
            history=history,
        )

        events = [e async for e in service.chat_stream("What is blocked?", "session-1")]

        assert events[-1].type == "done"
        assert "citation" not in [e.type for e in events]
        synthesis_prompt = llm.calls[-1]["messages"][0]["content"]
        assert "## Source: jira-issues (Error)\n401 Unauthorized" in synthesis_prompt
