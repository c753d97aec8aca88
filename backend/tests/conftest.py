"""
Pytest configuration and fixtures for Orchestral tests.

Provides common fixtures for testing:
- A scripted LLM client
- Stub knowledge sources
- A ChatService wired to them
- An HTTP client against the FastAPI app
"""

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from orchestral.main import app
from orchestral.services.chat_history_service import ChatHistoryService
from orchestral.services.chat_service import ChatService, get_chat_service
from support import StubLLM, StubSource, make_citation, plan_json


@pytest.fixture
def blocked_source() -> StubSource:
    """Jira-like source reporting one blocked issue."""
    return StubSource(
        "jira-issues",
        data={"items": ["X-1"]},
        citations=[make_citation("X-1", title="[X-1] Payment flow")],
        priority=1,
    )


@pytest.fixture
def stub_llm() -> StubLLM:
    return StubLLM(
        plan_response=plan_json(["jira-issues"], reasoning="Blocked work is tracked in Jira"),
        answer="X-1 is blocked [1].",
        stream_chunks=["X-1 is ", "blocked [1]."],
    )


@pytest.fixture
def history() -> ChatHistoryService:
    return ChatHistoryService(ttl_minutes=60, max_sessions=100)


@pytest.fixture
def chat_service(stub_llm: StubLLM, blocked_source: StubSource, history) -> ChatService:
    return ChatService(llm_client=stub_llm, sources=[blocked_source], history=history)


@pytest.fixture
async def client(chat_service: ChatService) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with the chat service overridden."""
    app.dependency_overrides[get_chat_service] = lambda: chat_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
