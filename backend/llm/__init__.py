"""
LLM providers package.
Streaming completion client and title derivation.
"""

from llm.base import LLMProvider, LLMResponse, StreamChunk
from llm.factory import create_provider, get_available_providers

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "StreamChunk",
    "create_provider",
    "get_available_providers",
]
