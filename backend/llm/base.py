"""
Abstract base class for completion providers.
All providers must implement this interface.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncGenerator, Dict, List, Optional

from pydantic import BaseModel

from models.message import TokenUsage

logger = logging.getLogger(__name__)

TITLE_FALLBACK = "New Chat"
TITLE_MAX_LENGTH = 100

TITLE_INSTRUCTION = (
    "Generate a very short title (3-6 words) for a chat that starts with the "
    "following message. Respond with just the title, no quotes or punctuation."
)


@dataclass
class StreamChunk:
    """A single chunk from a streaming response.

    Content chunks carry text. The last chunk of a successful stream has
    is_done=True and carries the provider's usage report.
    """
    content: str = ""
    is_done: bool = False
    usage: Optional[TokenUsage] = None


class LLMResponse(BaseModel):
    """Complete (non-streaming) response from the provider."""
    content: str
    model: str
    provider: str
    usage: TokenUsage = TokenUsage()
    finish_reason: Optional[str] = None


class LLMProvider(ABC):
    """
    Abstract base class for completion providers.

    Each provider implementation must:
    1. Implement stream() to yield content chunks as soon as they are decoded,
       ending with a usage chunk, or raise ProviderError
    2. Implement generate() for short non-streaming calls
    """

    provider_name: str = "base"

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        """
        Initialize provider with credentials.

        Args:
            api_key: API key for authentication (if required)
            base_url: Base URL for API requests
        """
        self.api_key = api_key
        self.base_url = base_url

    @abstractmethod
    def stream(
        self,
        messages: List[Dict[str, str]],
        model: str,
        **kwargs
    ) -> AsyncGenerator[StreamChunk, None]:
        """
        Stream a chat completion.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model identifier to use

        Yields:
            StreamChunk objects with partial content, then one chunk with
            is_done=True and the usage report.

        Raises:
            ProviderError: On any upstream failure. No usage chunk is
                yielded in that case.
        """

    @abstractmethod
    async def generate(
        self,
        messages: List[Dict[str, str]],
        model: str,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        """
        Generate a complete response (non-streaming).

        Raises:
            ProviderError: On any upstream failure.
        """

    async def generate_title(
        self,
        seed_text: str,
        model: str,
        max_tokens: int = 20,
        fallback: str = TITLE_FALLBACK,
    ) -> str:
        """Derive a short session title from the first user message.

        Best effort: any failure, or an empty answer, returns ``fallback``
        instead of raising. Callers pass their own placeholder so a failed
        derivation is recognisable as "no title".
        """
        try:
            response = await self.generate(
                messages=[
                    {"role": "system", "content": TITLE_INSTRUCTION},
                    {"role": "user", "content": seed_text},
                ],
                model=model,
                max_tokens=max_tokens,
            )
        except Exception as e:
            logger.error(f"Error generating session title: {e}")
            return fallback

        title = response.content.strip().strip("\"'").strip()
        if not title:
            return fallback
        return title[:TITLE_MAX_LENGTH]
