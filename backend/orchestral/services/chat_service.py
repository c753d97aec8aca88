"""
Chat Service - orchestrates one chat turn across knowledge sources.

Each turn goes planning -> querying -> synthesizing:
1. Probe which registered sources are available
2. Ask the query planner for a plan over them
3. Run the plan with the execution engine
4. Synthesize a cited answer and store it in the session

`chat_stream` reports each step as a StreamEvent while it happens.
"""

import asyncio
import time
from typing import AsyncIterator, Dict, Iterable, List, Optional

from orchestral.core.exceptions import AppError
from orchestral.core.logging import get_logger, set_session_context
from orchestral.core.metrics import metrics
from orchestral.models.chat import ChatMessage, ChatResponse, ChatSession
from orchestral.models.knowledge import KnowledgeSourceMetadata, QueryContext
from orchestral.models.stream import StreamEvent
from orchestral.services.chat_history_service import ChatHistoryService
from orchestral.services.claude_client import ClaudeClient, LLMClient
from orchestral.services.execution_engine import ExecutionEngine
from orchestral.services.query_planner import QueryPlanner
from orchestral.services.result_synthesizer import ResultSynthesizer
from orchestral.sources import build_default_sources
from orchestral.sources.base import KnowledgeSource

logger = get_logger(__name__)

# Marks the end of a relayed task's events
_TASK_DONE = object()


class ChatService:
    """Answers chat messages using the registered knowledge sources."""

    def __init__(
        self,
        llm_client: LLMClient,
        sources: Optional[Iterable[KnowledgeSource]] = None,
        history: Optional[ChatHistoryService] = None,
        planner: Optional[QueryPlanner] = None,
        synthesizer: Optional[ResultSynthesizer] = None,
    ):
        self.llm_client = llm_client
        self.sources: Dict[str, KnowledgeSource] = {}
        self.history = history or ChatHistoryService()
        self.planner = planner or QueryPlanner(llm_client)
        self.synthesizer = synthesizer or ResultSynthesizer(llm_client)
        self.engine = ExecutionEngine(self.sources)

        for source in sources or []:
            self.register_source(source)

    # ============ Source registry ============

    def register_source(self, source: KnowledgeSource) -> None:
        """Register a source; registering the same id again replaces it."""
        self.sources[source.metadata.id] = source
        logger.info(f"Registered knowledge source: {source.metadata.id}")

    def unregister_source(self, source_id: str) -> None:
        if self.sources.pop(source_id, None) is not None:
            logger.info(f"Unregistered knowledge source: {source_id}")

    def get_available_sources(self) -> List[KnowledgeSourceMetadata]:
        """Metadata of every registered source, without probing."""
        return [source.metadata for source in self.sources.values()]

    async def get_available_sources_filtered(self) -> List[KnowledgeSourceMetadata]:
        """Metadata of the registered sources whose availability probe passes."""
        sources = list(self.sources.values())
        checks = await asyncio.gather(*(self._probe(source) for source in sources))
        return [source.metadata for source, available in zip(sources, checks) if available]

    @staticmethod
    async def _probe(source: KnowledgeSource) -> bool:
        try:
            return bool(await source.is_available())
        except Exception as e:
            logger.warning(
                f"Source {source.metadata.id} availability check failed: {e}",
                extra={"error_type": type(e).__name__},
            )
            return False

    # ============ Sessions ============

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return self.history.get(session_id)

    def delete_session(self, session_id: str) -> bool:
        return self.history.delete(session_id)

    def _start_turn(self, message: str, session_id: Optional[str]) -> ChatSession:
        session = self.history.get_or_create(session_id)
        set_session_context(session.id)
        self.history.append(session.id, ChatMessage(role="user", content=message))
        return session

    # ============ Chat ============

    async def chat(self, message: str, session_id: Optional[str] = None) -> ChatResponse:
        """
        Answer one message.

        Raises:
            AppError: If synthesis fails; no assistant message is stored then
        """
        start = time.perf_counter()
        session = self._start_turn(message, session_id)

        try:
            available = await self.get_available_sources_filtered()
            plan = await self.planner.create_plan(message, available)
            execution = await self.engine.execute(
                plan, QueryContext(query=message, session_id=session.id)
            )
            synthesized = await self.synthesizer.synthesize(
                message, execution.results, execution.citations
            )
        except Exception:
            metrics.record_chat("single", False, time.perf_counter() - start)
            raise

        assistant = ChatMessage(
            role="assistant",
            content=synthesized.content,
            citations=synthesized.citations,
        )
        self.history.append(session.id, assistant)

        elapsed = time.perf_counter() - start
        metrics.record_chat("single", True, elapsed)
        logger.info(
            "Chat turn completed",
            extra={
                "sources": plan.source_ids,
                "citations": len(synthesized.citations),
                "duration_ms": round(elapsed * 1000, 2),
            },
        )
        return ChatResponse(
            message=assistant,
            sources=plan.source_ids,
            execution_time=round(elapsed * 1000, 2),
        )

    async def chat_stream(
        self,
        message: str,
        session_id: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Answer one message as a stream of events.

        Querying and content events are relayed while the engine and the
        synthesizer run. Closing the generator cancels whatever is still
        running, and the assistant message is only stored right before
        `done` is yielded.
        """
        start = time.perf_counter()
        session = self._start_turn(message, session_id)
        pending: Optional[asyncio.Task] = None
        success = False
        metrics.active_streams.inc()

        try:
            available = await self.get_available_sources_filtered()
            yield StreamEvent.planning_started()
            plan = await self.planner.create_plan(message, available)
            yield StreamEvent.planning(plan)

            progress: asyncio.Queue = asyncio.Queue()
            pending = asyncio.create_task(
                self.engine.execute(
                    plan,
                    QueryContext(query=message, session_id=session.id),
                    on_source_start=lambda sid: progress.put_nowait(
                        StreamEvent.querying(sid, "started")
                    ),
                    on_source_complete=lambda sid, _result: progress.put_nowait(
                        StreamEvent.querying(sid, "completed")
                    ),
                )
            )
            async for event in self._relay(progress, pending):
                yield event
            execution = pending.result()
            pending = None

            for index, citation in enumerate(execution.citations, start=1):
                yield StreamEvent.citation(citation, index)
            yield StreamEvent.synthesizing()

            deltas: asyncio.Queue = asyncio.Queue()
            pending = asyncio.create_task(
                self.synthesizer.synthesize_stream(
                    message,
                    execution.results,
                    execution.citations,
                    on_content=lambda delta: deltas.put_nowait(StreamEvent.content(delta)),
                )
            )
            async for event in self._relay(deltas, pending):
                yield event
            try:
                synthesized = pending.result()
            except Exception as e:
                error = e.message if isinstance(e, AppError) else str(e)
                logger.error(f"Streamed synthesis failed: {error}")
                yield StreamEvent.error(error)
                return
            finally:
                pending = None

            assistant = ChatMessage(
                role="assistant",
                content=synthesized.content,
                citations=synthesized.citations,
            )
            self.history.append(session.id, assistant)
            success = True
            yield StreamEvent.done(assistant)
        finally:
            if pending is not None and not pending.done():
                pending.cancel()
                logger.info("Chat stream closed early, cancelled in-flight work")
            metrics.active_streams.dec()
            metrics.record_chat("stream", success, time.perf_counter() - start)

    @staticmethod
    async def _relay(queue: asyncio.Queue, task: asyncio.Task) -> AsyncIterator[StreamEvent]:
        """Yield events the task puts on the queue until the task finishes."""
        task.add_done_callback(lambda _task: queue.put_nowait(_TASK_DONE))
        while True:
            event = await queue.get()
            if event is _TASK_DONE:
                return
            yield event


# Process-wide service, created on first use
_chat_service: Optional[ChatService] = None


def get_chat_service() -> ChatService:
    """FastAPI dependency returning the shared ChatService."""
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService(llm_client=ClaudeClient(), sources=build_default_sources())
    return _chat_service
