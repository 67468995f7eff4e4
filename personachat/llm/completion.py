import logging
from typing import AsyncIterator, Callable

from ..errors import PersonaChatError
from .base import LLMProvider
from .registry import get_provider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], LLMProvider]


class CompletionService:
    """Prompt-in, text-out access to the configured language model.

    Everything the chat engine needs from a provider goes through the two
    calls here; provider exceptions come out translated into the
    ``personachat.errors`` taxonomy.
    """

    def __init__(self, provider_factory: ProviderFactory = get_provider) -> None:
        self._provider_factory = provider_factory

    def _messages(self, prompt: str) -> list[dict]:
        return [{"role": "user", "content": prompt}]

    async def generate_completion(self, prompt: str, model: str, **kwargs) -> str:
        provider = self._provider_factory()
        try:
            return await provider.complete(self._messages(prompt), model, **kwargs)
        except PersonaChatError:
            raise
        except Exception as exc:
            translated = provider.translate_error(exc)
            if translated is exc:
                raise
            raise translated from exc

    async def stream_completion(self, prompt: str, model: str, **kwargs) -> AsyncIterator[str]:
        """Open a streaming completion; raises on setup failure."""
        provider = self._provider_factory()
        try:
            raw = await provider.stream(self._messages(prompt), model, **kwargs)
        except PersonaChatError:
            raise
        except Exception as exc:
            translated = provider.translate_error(exc)
            if translated is exc:
                raise
            raise translated from exc
        return self._translated(provider, raw)

    @staticmethod
    async def _translated(provider: LLMProvider, raw: AsyncIterator[str]) -> AsyncIterator[str]:
        try:
            async for fragment in raw:
                yield fragment
        except PersonaChatError:
            raise
        except Exception as exc:
            translated = provider.translate_error(exc)
            if translated is exc:
                raise
            raise translated from exc
        finally:
            aclose = getattr(raw, "aclose", None)
            if aclose is not None:
                await aclose()
