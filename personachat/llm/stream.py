"""Resilient consumption of streamed completions.

A request moves through ``STARTED -> STREAMING -> COMPLETED`` on the happy
path. When the stream breaks before producing anything and the failure is
recoverable, it is replaced by one non-streaming completion (``FALLBACK``).
Once any text has been handed to the caller a failure is re-raised as is
(``FAILED``), so the caller keeps the partial reply instead of receiving it
twice.
"""

import asyncio
import logging
from contextlib import aclosing
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional

from ..config import StreamConfig, get_config
from ..errors import (
    ConfigurationError,
    ServiceUnavailableError,
    StreamTimeoutError,
    is_recoverable,
)
from .completion import CompletionService

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    STARTED = "started"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FALLBACK = "fallback"
    FAILED = "failed"


async def with_chunk_timeout(raw: AsyncIterator[str], timeout: float) -> AsyncIterator[str]:
    """Yield non-empty fragments, failing if one takes longer than *timeout*.

    The underlying iterator is closed on every exit path, including the
    timeout and an early ``aclose()`` by the consumer.
    """
    iterator = aiter(raw)
    try:
        while True:
            try:
                fragment = await asyncio.wait_for(anext(iterator), timeout)
            except StopAsyncIteration:
                return
            except asyncio.TimeoutError as exc:
                raise StreamTimeoutError(
                    f"流式数据接收超时（{timeout:g}秒内未收到数据）"
                ) from exc
            if fragment:
                yield fragment
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()


class ManagedStream:
    """A single generation request as seen by the orchestration engine."""

    def __init__(
        self,
        raw: Optional[AsyncIterator[str]],
        fallback: Callable[[], Awaitable[str]],
        config: StreamConfig,
        setup_error: Optional[BaseException] = None,
    ) -> None:
        self._raw = raw
        self._fallback = fallback
        self._config = config
        self._setup_error = setup_error
        self.state = StreamState.STARTED
        self.has_content = False

    def __aiter__(self) -> AsyncIterator[str]:
        return self._fragments()

    async def _fragments(self) -> AsyncIterator[str]:
        if self._raw is None:
            # Setup never succeeded; only the fallback is left
            text = await self._run_fallback(self._setup_error)
            if text:
                yield text
            return

        try:
            async with aclosing(with_chunk_timeout(self._raw, self._config.chunk_timeout)) as fragments:
                async for fragment in fragments:
                    self.state = StreamState.STREAMING
                    self.has_content = True
                    yield fragment
        except Exception as exc:
            if self.has_content:
                self.state = StreamState.FAILED
                logger.warning("Stream interrupted after partial output: %s", exc)
                raise
            if not is_recoverable(exc):
                self.state = StreamState.FAILED
                raise
            logger.warning("Recoverable stream error, falling back to non-streaming generation: %s", exc)
            text = await self._run_fallback(exc)
            if text:
                yield text
            return

        self.state = StreamState.COMPLETED

    async def _run_fallback(self, cause: Optional[BaseException]) -> str:
        self.state = StreamState.FALLBACK
        try:
            text = await asyncio.wait_for(self._fallback(), self._config.overall_timeout)
        except ConfigurationError:
            self.state = StreamState.FAILED
            raise
        except Exception as exc:
            self.state = StreamState.FAILED
            logger.error("Fallback generation failed (stream error: %s): %s", cause, exc)
            raise ServiceUnavailableError() from exc
        if text:
            self.has_content = True
        return text


class StreamAdapter:
    """Opens streams with retry on setup and wraps them in a ManagedStream."""

    def __init__(self, completion: CompletionService, config: Optional[StreamConfig] = None) -> None:
        self._completion = completion
        self._config = config

    @property
    def config(self) -> StreamConfig:
        return self._config or get_config().stream

    async def open(self, prompt: str, model: str, **kwargs) -> ManagedStream:
        config = self.config

        def fallback() -> Awaitable[str]:
            return self._completion.generate_completion(prompt, model, **kwargs)

        last_error: Optional[Exception] = None
        for attempt in range(config.max_retries + 1):
            if attempt:
                logger.info("Retrying stream request (retry %d)", attempt)
                await asyncio.sleep(config.retry_delay * attempt)
            try:
                raw = await self._completion.stream_completion(prompt, model, **kwargs)
            except ConfigurationError:
                raise
            except Exception as exc:
                last_error = exc
                logger.warning("Stream request attempt %d failed: %s", attempt + 1, exc)
                continue
            return ManagedStream(raw, fallback, config)

        if last_error is not None and is_recoverable(last_error):
            logger.warning("Stream setup kept failing, switching to non-streaming generation")
            return ManagedStream(None, fallback, config, setup_error=last_error)
        raise ServiceUnavailableError() from last_error
