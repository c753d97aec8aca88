"""
Result Synthesizer - turns source results into one cited answer.

The synthesizer shows the LLM every source's data plus a numbered
citation pool, then keeps only the citations the answer actually
references with `[n]` markers.
"""

import re
from typing import List, Optional

from orchestral.core.config import settings
from orchestral.core.exceptions import AppError, SynthesisError
from orchestral.core.logging import get_logger
from orchestral.core.metrics import metrics
from orchestral.models.knowledge import Citation, KnowledgeSourceResult, SynthesizedResponse
from orchestral.services.claude_client import ContentCallback, LLMClient
from orchestral.services.prompt_service import PromptService, prompt_service

logger = get_logger(__name__)

CITATION_MARKER = re.compile(r"\[(\d+)\]")


def extract_referenced_citations(content: str, citations: List[Citation]) -> List[Citation]:
    """
    Citations referenced by `[n]` markers in content.

    Only indices within 1..len(citations) count; each is returned once,
    in ascending index order.
    """
    max_digits = len(str(len(citations)))
    indices = {int(match) for match in CITATION_MARKER.findall(content) if len(match) <= max_digits}
    return [citations[i - 1] for i in sorted(indices) if 1 <= i <= len(citations)]


class ResultSynthesizer:
    """Synthesizes answers from knowledge source results."""

    def __init__(self, llm_client: LLMClient, prompts: Optional[PromptService] = None):
        self.llm_client = llm_client
        self.prompts = prompts or prompt_service

    async def synthesize(
        self,
        query: str,
        results: List[KnowledgeSourceResult],
        citations: List[Citation],
    ) -> SynthesizedResponse:
        """
        Produce the answer in one LLM call.

        Raises:
            SynthesisError: If the LLM call fails
        """
        try:
            content = await self.llm_client.complete(
                messages=self._messages(query, results, citations),
                system_prompt=self.prompts.synthesizer_prompt(),
                max_tokens=settings.llm_max_tokens_synthesis,
                temperature=settings.llm_temperature_synthesis,
                purpose="synthesis",
            )
        except Exception as e:
            raise self._wrap(e) from e

        return SynthesizedResponse(
            content=content,
            citations=extract_referenced_citations(content, citations),
        )

    async def synthesize_stream(
        self,
        query: str,
        results: List[KnowledgeSourceResult],
        citations: List[Citation],
        on_content: ContentCallback,
    ) -> SynthesizedResponse:
        """
        Produce the answer while streaming it; on_content receives each delta.

        Raises:
            SynthesisError: If the LLM call fails
        """
        try:
            content = await self.llm_client.stream(
                messages=self._messages(query, results, citations),
                system_prompt=self.prompts.synthesizer_prompt(),
                max_tokens=settings.llm_max_tokens_synthesis,
                temperature=settings.llm_temperature_synthesis,
                purpose="synthesis",
                on_content=on_content,
            )
        except Exception as e:
            raise self._wrap(e) from e

        return SynthesizedResponse(
            content=content,
            citations=extract_referenced_citations(content, citations),
        )

    def _messages(self, query, results, citations):
        context = self.prompts.build_source_context(results, citations)
        return [
            {
                "role": "user",
                "content": self.prompts.synthesis_user_message(query, context, len(citations)),
            }
        ]

    @staticmethod
    def _wrap(error: Exception) -> AppError:
        logger.error(
            f"Synthesis failed: {error}",
            extra={"error_type": type(error).__name__},
        )
        metrics.record_error(type(error).__name__, stage="synthesis")
        if isinstance(error, AppError):
            return error
        return SynthesisError(str(error))
