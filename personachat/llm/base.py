import json
from abc import ABC, abstractmethod
from typing import AsyncIterator

import httpx
from pydantic import ValidationError

from ..errors import PersonaChatError, TransientTransportError


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    name: str
    label: str

    @abstractmethod
    async def complete(
        self, messages: list[dict], model: str, **kwargs
    ) -> str:
        """Send messages and get a complete response."""
        ...

    @abstractmethod
    async def stream(
        self, messages: list[dict], model: str, **kwargs
    ) -> AsyncIterator[str]:
        """Send the request and return an iterator over response tokens.

        The request goes out when this coroutine is awaited, so connection
        and credential failures are raised here rather than on the first
        token. Closing the returned iterator releases the connection.
        """
        ...

    def translate_error(self, exc: Exception) -> Exception:
        """Map an SDK exception onto the chat error taxonomy.

        Subclasses handle their SDK's auth and status errors and defer to
        this for transport-level failures shared by every client.
        """
        if isinstance(exc, PersonaChatError):
            return exc
        if isinstance(exc, (httpx.TransportError, ValidationError, json.JSONDecodeError)):
            return TransientTransportError(f"AI 服务传输错误：{exc}")
        return exc
