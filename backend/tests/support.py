"""Test doubles and helpers shared by the unit and integration tests."""

import asyncio
import json
from typing import Any, Dict, List, Optional

from orchestral.models.knowledge import Citation, KnowledgeSourceMetadata, QueryContext
from orchestral.services.prompt_service import PromptService
from orchestral.sources.base import KnowledgeSource


class StubLLM:
    """
    LLM client returning scripted text.

    Calls made with the synthesizer system prompt get `answer`, every other
    call gets `plan_response`.
    """

    def __init__(
        self,
        plan_response: str = "",
        answer: str = "",
        stream_chunks: Optional[List[str]] = None,
        plan_error: Optional[Exception] = None,
        synthesis_error: Optional[Exception] = None,
    ):
        self.plan_response = plan_response
        self.answer = answer
        self.stream_chunks = stream_chunks
        self.plan_error = plan_error
        self.synthesis_error = synthesis_error
        self.calls: List[Dict[str, Any]] = []

    async def complete(
        self, messages, system_prompt=None, max_tokens=4096, temperature=0.0, purpose="complete"
    ):
        self.calls.append(
            {"messages": messages, "system_prompt": system_prompt, "stream": False, "purpose": purpose}
        )
        if system_prompt == PromptService.SYNTHESIZER_PROMPT:
            if self.synthesis_error:
                raise self.synthesis_error
            return self.answer
        if self.plan_error:
            raise self.plan_error
        return self.plan_response

    async def stream(
        self,
        messages,
        system_prompt=None,
        max_tokens=4096,
        temperature=0.0,
        on_content=None,
        purpose="stream",
    ):
        self.calls.append(
            {"messages": messages, "system_prompt": system_prompt, "stream": True, "purpose": purpose}
        )
        if self.synthesis_error:
            raise self.synthesis_error
        chunks = self.stream_chunks if self.stream_chunks is not None else [self.answer]
        for chunk in chunks:
            await asyncio.sleep(0)
            if on_content is not None:
                on_content(chunk)
        return "".join(chunks)


class StubSource(KnowledgeSource):
    """Knowledge source returning fixed data and citations."""

    def __init__(
        self,
        source_id: str,
        data: Any = None,
        citations: Optional[List[Citation]] = None,
        available: Any = True,
        error: Optional[Exception] = None,
        priority: int = 100,
    ):
        self._metadata = KnowledgeSourceMetadata(
            id=source_id,
            name=source_id.replace("-", " ").title(),
            description=f"Test source {source_id}",
            capabilities=["test"],
            example_queries=["anything"],
            priority=priority,
        )
        self.data = data
        self.citations = citations or []
        self.available = available
        self.error = error
        self.contexts: List[QueryContext] = []

    @property
    def metadata(self) -> KnowledgeSourceMetadata:
        return self._metadata

    async def _check_available(self) -> bool:
        if isinstance(self.available, Exception):
            raise self.available
        return self.available

    async def _run_query(self, context: QueryContext):
        self.contexts.append(context)
        if self.error:
            raise self.error
        return self.data, list(self.citations)


def make_citation(citation_id: str, source_id: str = "jira-issues", **kwargs) -> Citation:
    """Build a citation with sensible defaults."""
    return Citation(
        source_id=source_id,
        type=kwargs.pop("type", "jira-issue"),
        id=citation_id,
        title=kwargs.pop("title", f"[{citation_id}] Test issue"),
        **kwargs,
    )


def plan_json(*phases: List[str], reasoning: str = "Test plan") -> str:
    """Planner response with one phase per list of source ids."""
    return json.dumps(
        {
            "phases": [
                {
                    "phase": index,
                    "sources": [{"sourceId": sid, "reason": "relevant"} for sid in ids],
                    "waitForPrevious": index > 1,
                }
                for index, ids in enumerate(phases, start=1)
            ],
            "reasoning": reasoning,
        }
    )


def parse_sse(body: str) -> List[Dict[str, Any]]:
    """Decode a text/event-stream body into its event payloads."""
    return [
        json.loads(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


