"""Claude API client used for query planning and answer synthesis."""

import time
from typing import Callable, Dict, List, Optional, Protocol

import anthropic
from anthropic import NOT_GIVEN, AsyncAnthropic

from orchestral.core.config import settings
from orchestral.core.exceptions import AnthropicAPIError, AnthropicRateLimitError, ConfigurationError
from orchestral.core.logging import get_logger, perf_logger
from orchestral.core.metrics import metrics

logger = get_logger(__name__)

MAX_TOKENS = 4096

Message = Dict[str, str]  # {"role": "user" | "assistant", "content": str}
ContentCallback = Callable[[str], None]


class LLMClient(Protocol):
    """What the planner and synthesizer need from a language model."""

    async def complete(
        self,
        messages: List[Message],
        system_prompt: Optional[str] = None,
        max_tokens: int = MAX_TOKENS,
        temperature: float = 0.0,
        purpose: str = "complete",
    ) -> str:
        ...

    async def stream(
        self,
        messages: List[Message],
        system_prompt: Optional[str] = None,
        max_tokens: int = MAX_TOKENS,
        temperature: float = 0.0,
        on_content: Optional[ContentCallback] = None,
        purpose: str = "stream",
    ) -> str:
        ...


class ClaudeClient:
    """Wrapper for Anthropic Claude API interactions."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[AsyncAnthropic] = None,
    ):
        """Initialize the Claude client. The SDK client is created on first use."""
        self.api_key = api_key or settings.anthropic_api_key
        self.model = model or settings.llm_model
        self._client = client

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError("ANTHROPIC_API_KEY is not configured")
            self._client = AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        messages: List[Message],
        system_prompt: Optional[str] = None,
        max_tokens: int = MAX_TOKENS,
        temperature: float = 0.0,
        purpose: str = "complete",
    ) -> str:
        """Create a non-streaming message and return its text."""
        start = time.perf_counter()
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt or NOT_GIVEN,
                messages=messages,
            )
        except anthropic.APIError as e:
            self._raise_mapped(e, purpose, start)

        self._record(purpose, response.usage, start)
        return self.extract_text(response)

    async def stream(
        self,
        messages: List[Message],
        system_prompt: Optional[str] = None,
        max_tokens: int = MAX_TOKENS,
        temperature: float = 0.0,
        on_content: Optional[ContentCallback] = None,
        purpose: str = "stream",
    ) -> str:
        """Stream a message, calling on_content with each text delta. Returns the full text."""
        start = time.perf_counter()
        chunks: List[str] = []
        try:
            async with self.client.messages.stream(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt or NOT_GIVEN,
                messages=messages,
            ) as stream:
                async for text in stream.text_stream:
                    chunks.append(text)
                    if on_content is not None:
                        on_content(text)
                final = await stream.get_final_message()
        except anthropic.APIError as e:
            self._raise_mapped(e, purpose, start)

        self._record(purpose, final.usage, start)
        return "".join(chunks)

    @staticmethod
    def extract_text(response) -> str:
        """Extract text content from a response."""
        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )

    def _record(self, purpose: str, usage, start: float) -> None:
        duration = time.perf_counter() - start
        input_tokens = getattr(usage, "input_tokens", 0) or 0
        output_tokens = getattr(usage, "output_tokens", 0) or 0
        perf_logger.log_llm_call(self.model, purpose, input_tokens, output_tokens, duration * 1000)
        metrics.record_llm_call(self.model, purpose, input_tokens, output_tokens, duration)

    def _raise_mapped(self, error: anthropic.APIError, purpose: str, start: float) -> None:
        duration = time.perf_counter() - start
        metrics.record_llm_call(self.model, purpose, 0, 0, duration, success=False)
        metrics.record_error(type(error).__name__, stage=purpose)

        if isinstance(error, anthropic.RateLimitError):
            retry_after = None
            response = getattr(error, "response", None)
            if response is not None:
                header = response.headers.get("retry-after")
                if header and header.isdigit():
                    retry_after = int(header)
            logger.warning(f"Anthropic rate limit hit during {purpose}")
            raise AnthropicRateLimitError(retry_after=retry_after) from error

        logger.error(
            f"Anthropic API error during {purpose}: {error}",
            extra={"error_type": type(error).__name__},
        )
        raise AnthropicAPIError(str(error)) from error
