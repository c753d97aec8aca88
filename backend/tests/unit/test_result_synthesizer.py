"""
Unit tests for the result synthesizer and its prompts.
"""

import pytest

from orchestral.core.exceptions import AnthropicRateLimitError, SynthesisError
from orchestral.models.knowledge import KnowledgeSourceResult
from orchestral.services.prompt_service import PromptService
from orchestral.services.result_synthesizer import (
    ResultSynthesizer,
    extract_referenced_citations,
)
from support import StubLLM, make_citation


CITATIONS = [make_citation("X-1"), make_citation("X-2"), make_citation("X-3")]


class TestExtractReferencedCitations:
    """Tests for matching [n] markers to the citation pool."""

    def test_referenced_citations_in_index_order(self):
        content = "X-3 is late [3]. X-1 is blocked [1]. Again [1]."
        referenced = extract_referenced_citations(content, CITATIONS)

        assert [c.id for c in referenced] == ["X-1", "X-3"]

    def test_out_of_range_markers_are_ignored(self):
        assert extract_referenced_citations("See [0], [4] and [12].", CITATIONS) == []

    def test_no_markers(self):
        assert extract_referenced_citations("Nothing cited.", CITATIONS) == []

    def test_oversized_markers_are_ignored(self):
        content = "X-1 is blocked [1]. See [" + "9" * 5000 + "]."

        assert [c.id for c in extract_referenced_citations(content, CITATIONS)] == ["X-1"]


class TestPromptService:
    """Tests for the synthesizer context."""

    def test_source_context_sections(self):
        results = [
            KnowledgeSourceResult(source_id="jira-issues", data={"items": ["X-1"]}),
            KnowledgeSourceResult.failure("slack-messages", "token revoked"),
            KnowledgeSourceResult(source_id="confluence-pages", data=None),
        ]
        context = PromptService().build_source_context(results, CITATIONS[:1])

        assert "## Source: jira-issues\n{" in context
        assert '"X-1"' in context
        assert "## Source: slack-messages (Error)\ntoken revoked" in context
        assert "confluence-pages" not in context
        assert "## Available Citations\n[1] [X-1] Test issue (jira-issue: X-1)" in context

    def test_user_message_states_citation_range(self):
        message = PromptService().synthesis_user_message("What is blocked?", "ctx", 3)

        assert message.startswith("User Question: What is blocked?")
        assert message.endswith("Available citation indices: 1 to 3")


class TestSynthesize:
    """Tests for ResultSynthesizer."""

    @pytest.mark.asyncio
    async def test_synthesize_keeps_referenced_citations(self):
        llm = StubLLM(answer="X-1 is blocked [1] and X-3 is stale [3].")
        response = await ResultSynthesizer(llm).synthesize("What is blocked?", [], CITATIONS)

        assert response.content == "X-1 is blocked [1] and X-3 is stale [3]."
        assert [c.id for c in response.citations] == ["X-1", "X-3"]
        assert llm.calls[0]["system_prompt"] == PromptService.SYNTHESIZER_PROMPT
        assert llm.calls[0]["purpose"] == "synthesis"

    @pytest.mark.asyncio
    async def test_synthesize_stream_reports_deltas(self):
        llm = StubLLM(stream_chunks=["X-2 ", "is done ", "[2]."])
        deltas = []

        response = await ResultSynthesizer(llm).synthesize_stream(
            "What is done?", [], CITATIONS, on_content=deltas.append
        )

        assert deltas == ["X-2 ", "is done ", "[2]."]
        assert response.content == "X-2 is done [2]."
        assert [c.id for c in response.citations] == ["X-2"]

    @pytest.mark.asyncio
    async def test_llm_failure_becomes_synthesis_error(self):
        llm = StubLLM(synthesis_error=RuntimeError("timeout"))

        with pytest.raises(SynthesisError) as exc_info:
            await ResultSynthesizer(llm).synthesize("q", [], CITATIONS)
        assert exc_info.value.details["original_error"] == "timeout"

    @pytest.mark.asyncio
    async def test_app_errors_pass_through(self):
        llm = StubLLM(synthesis_error=AnthropicRateLimitError(retry_after=5))

        with pytest.raises(AnthropicRateLimitError):
            await ResultSynthesizer(llm).synthesize_stream("q", [], CITATIONS, on_content=print)

    @pytest.mark.asyncio
    async def test_oversized_marker_in_answer_is_harmless(self):
        llm = StubLLM(answer="ok [1] [" + "9" * 5000 + "]")
        response = await ResultSynthesizer(llm).synthesize("q", [], CITATIONS)

        assert [c.id for c in response.citations] == ["X-1"]
