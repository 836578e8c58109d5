"""
OpenAI completion provider.
Talks to any OpenAI-compatible /chat/completions endpoint over httpx.
"""

import json
import logging
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx

from llm.base import LLMProvider, LLMResponse, StreamChunk
from models.message import TokenUsage
from utils.errors import ProviderError

logger = logging.getLogger(__name__)


def _parse_usage(data: Optional[Dict[str, Any]]) -> Optional[TokenUsage]:
    if not data:
        return None
    return TokenUsage(
        prompt_tokens=data.get("prompt_tokens", 0) or 0,
        completion_tokens=data.get("completion_tokens", 0) or 0,
    )


class OpenAIProvider(LLMProvider):
    """
    OpenAI API provider.

    Each instance carries its own credentials; nothing is shared between
    instances. ``transport`` lets tests swap in httpx.MockTransport.
    """

    provider_name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, base_url)
        self.base_url = (base_url or "https://api.openai.com/v1").rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _get_headers(self) -> Dict[str, str]:
        """Build request headers with authentication."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def generate(
        self,
        messages: List[Dict[str, str]],
        model: str,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        """Generate a complete response from OpenAI."""
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self._get_headers(),
                    json=payload
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"OpenAI returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"OpenAI request failed: {e}") from e

        try:
            choice = data["choices"][0]
            content = choice["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError("OpenAI response had no choices") from e

        return LLMResponse(
            content=content,
            model=model,
            provider=self.provider_name,
            usage=_parse_usage(data.get("usage")) or TokenUsage(),
            finish_reason=choice.get("finish_reason")
        )

    async def stream(
        self,
        messages: List[Dict[str, str]],
        model: str,
        **kwargs
    ) -> AsyncGenerator[StreamChunk, None]:
        """Stream response chunks from OpenAI.

        Usage is only reported on streams when explicitly requested, so the
        payload always sets stream_options.include_usage. The usage arrives
        in a final chunk with an empty choices list, just before [DONE].
        """
        payload = {
            "model": model,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }

        usage: Optional[TokenUsage] = None
        finished = False
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    headers=self._get_headers(),
                    json=payload
                ) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        logger.error(f"OpenAI stream rejected ({response.status_code}): {body[:500]}")
                        raise ProviderError(
                            f"OpenAI returned HTTP {response.status_code}",
                            status_code=response.status_code,
                        )

                    async for line in response.aiter_lines():
                        if not line or not line.startswith("data:"):
                            continue

                        data_str = line[5:].strip()
                        if data_str == "[DONE]":
                            finished = True
                            break

                        try:
                            data = json.loads(data_str)
                        except json.JSONDecodeError as e:
                            logger.warning(f"Failed to parse chunk: {e}")
                            continue

                        if data.get("error"):
                            error = data["error"]
                            message = error.get("message") if isinstance(error, dict) else str(error)
                            raise ProviderError(f"OpenAI stream error: {message}")

                        if data.get("usage"):
                            usage = _parse_usage(data["usage"])

                        choices = data.get("choices") or []
                        if choices:
                            content = (choices[0].get("delta") or {}).get("content")
                            if content:
                                yield StreamChunk(content=content)
        except httpx.HTTPError as e:
            raise ProviderError(f"OpenAI stream failed: {e}") from e

        if not finished:
            raise ProviderError("OpenAI stream ended before completion")

        yield StreamChunk(is_done=True, usage=usage or TokenUsage())
