"""
AI feature: Resilient client for the text-generation capability.

Every provider call goes through the process-wide CallScheduler and is
retried with exponential backoff + jitter while the provider answers 429.
Without LLM_API_KEY the client answers with canned placeholder replies
through exactly the same call contract.

Error mapping:
  429 (after retries) / full queue   → RateLimitedError
  401 / 403 / bad provider config    → MisconfiguredError   (never retried)
  empty output                       → InvalidResponseError (never retried)
  anything else                      → UnavailableError     (never retried)
"""

import asyncio
import logging
import random
import re
from contextlib import aclosing
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence, TypeVar

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage

from study_assistant.config import Settings, get_settings
from study_assistant.core.exceptions import (
    AppBaseError,
    InvalidResponseError,
    MisconfiguredError,
    RateLimitedError,
    UnavailableError,
)
from study_assistant.core.llm_provider import create_llm
from study_assistant.core.rate_limit import (
    CallScheduler,
    QueueOverflowError,
    backoff_delay,
    is_rate_limit,
    status_of,
)
from study_assistant.features.ai.prompts import PLACEHOLDER_LABEL, PLACEHOLDER_REPLIES, build_messages
from study_assistant.features.ai.schemas import ChatTurn, GenerationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A word plus its trailing whitespace, so fragments concatenate back to the exact text
_WORD_RE = re.compile(r"\S+\s*|\s+")


def extract_text(content: Any) -> str:
    """Flatten LangChain message content (plain string or Gemini-style part list)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return ""


class GenerationClient:
    """Batch + streaming generation with scheduling, retry and degraded mode."""

    def __init__(
        self,
        settings: Settings | None = None,
        llm: BaseChatModel | None = None,
        scheduler: CallScheduler | None = None,
    ):
        self.settings = settings or get_settings()
        self._llm = llm
        self.scheduler = scheduler or CallScheduler(
            max_concurrent=self.settings.GENERATION_MAX_CONCURRENT,
            min_interval=self.settings.GENERATION_MIN_INTERVAL_MS / 1000,
            max_pending=self.settings.GENERATION_MAX_PENDING,
        )
        if not self.is_configured():
            logger.warning("LLM_API_KEY not configured. Placeholder responses will be used.")

    def is_configured(self) -> bool:
        return self._llm is not None or bool(self.settings.LLM_API_KEY)

    @property
    def llm(self) -> BaseChatModel:
        if self._llm is None:
            try:
                self._llm = create_llm(self.settings)
            except ValueError as e:
                raise MisconfiguredError(str(e)) from e
        return self._llm

    # ── Batch ────────────────────────────────────────────

    async def generate(
        self,
        prompt: str,
        history: Sequence[ChatTurn] = (),
        context: Sequence[str] = (),
    ) -> GenerationResult:
        """Single-shot generation.

        Args:
            prompt: The new user message.
            history: Prior turns, oldest first.
            context: Grounding snippets from retrieval (may be empty).

        Returns:
            GenerationResult with content, token usage and model name.
        """
        if not self.is_configured():
            return self._placeholder()

        messages = build_messages(prompt, history, context)
        try:
            async with self.scheduler.slot():
                response = await self._call_with_retry(lambda: self.llm.ainvoke(messages))
        except QueueOverflowError as e:
            raise RateLimitedError(str(e)) from e
        except AppBaseError:
            raise
        except Exception as e:
            raise self._translate(e) from e

        content = extract_text(response.content).strip()
        if not content:
            raise InvalidResponseError()

        usage = getattr(response, "usage_metadata", None) or {}
        metadata = getattr(response, "response_metadata", None) or {}
        return GenerationResult(
            content=content,
            tokens_used=usage.get("total_tokens"),
            model=metadata.get("model_name") or self.settings.LLM_MODEL,
        )

    # ── Streaming ────────────────────────────────────────

    async def generate_streaming(
        self,
        prompt: str,
        history: Sequence[ChatTurn] = (),
        context: Sequence[str] = (),
    ) -> AsyncIterator[str]:
        """Lazy stream of text fragments for a single reader.

        Closing the iterator early (aclose / consumer cancelled) closes the
        provider stream and frees the scheduler slot. A rate limit is only
        retried while nothing has been yielded yet.
        """
        if not self.is_configured():
            async with aclosing(self._placeholder_stream()) as fragments:
                async for fragment in fragments:
                    yield fragment
            return

        messages = build_messages(prompt, history, context)
        try:
            async with self.scheduler.slot():
                async with aclosing(self._stream_with_retry(messages)) as fragments:
                    async for fragment in fragments:
                        yield fragment
        except QueueOverflowError as e:
            raise RateLimitedError(str(e)) from e
        except AppBaseError:
            raise
        except Exception as e:
            raise self._translate(e) from e

    async def _stream_with_retry(self, messages: list[BaseMessage]) -> AsyncIterator[str]:
        attempt = 0
        while True:
            emitted = False
            try:
                async with aclosing(self.llm.astream(messages)) as stream:
                    async for chunk in stream:
                        text = extract_text(chunk.content)
                        if text:
                            emitted = True
                            yield text
                if not emitted:
                    raise InvalidResponseError()
                return
            except Exception as error:
                if emitted or not self._should_retry(error, attempt):
                    raise
                await self._sleep_before_retry(attempt)
                attempt += 1

    # ── Retry policy ─────────────────────────────────────

    async def _call_with_retry(self, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                return await call()
            except Exception as error:
                if not self._should_retry(error, attempt):
                    raise
                await self._sleep_before_retry(attempt)
                attempt += 1

    def _should_retry(self, error: Exception, attempt: int) -> bool:
        if isinstance(error, AppBaseError):
            return False
        return is_rate_limit(error) and attempt < self.settings.GENERATION_MAX_RETRIES

    async def _sleep_before_retry(self, attempt: int) -> None:
        delay = backoff_delay(
            attempt,
            base=self.settings.GENERATION_BACKOFF_BASE_MS / 1000,
            jitter=self.settings.GENERATION_BACKOFF_JITTER_MS / 1000,
        )
        logger.warning(
            f"Provider rate limit hit, retry {attempt + 1}/{self.settings.GENERATION_MAX_RETRIES} "
            f"in {delay:.2f}s"
        )
        await asyncio.sleep(delay)

    def _translate(self, error: Exception) -> AppBaseError:
        status = status_of(error)
        if status == 429:
            logger.warning(f"Provider rate limit persisted after retries: {error}")
            return RateLimitedError(str(error))
        if status in (401, 403):
            logger.error(f"Provider rejected credentials: {error}")
            return MisconfiguredError(str(error))
        logger.error(f"Generation call failed: {error}", exc_info=error)
        return UnavailableError(str(error))

    # ── Degraded mode ────────────────────────────────────

    def _placeholder(self) -> GenerationResult:
        reply = random.choice(PLACEHOLDER_REPLIES)
        return GenerationResult(
            content=f"{PLACEHOLDER_LABEL}\n\n{reply}",
            tokens_used=0,
            model="placeholder",
        )

    async def _placeholder_stream(self) -> AsyncIterator[str]:
        content = self._placeholder().content
        delay = self.settings.PLACEHOLDER_STREAM_DELAY_MS / 1000
        for word in _WORD_RE.findall(content):
            yield word
            await asyncio.sleep(delay)
