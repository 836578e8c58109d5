import asyncio
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from config import Settings
from conversation_store import ConversationStore
from llm.base import LLMProvider, LLMResponse, StreamChunk
from models.message import TokenUsage
from sqlite_db import SQLiteDatabase
from utils.errors import ProviderError


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class FakeProvider(LLMProvider):
    """Scripted provider: yields ``chunks`` then a usage chunk.

    fail_after=N raises ProviderError before chunk N (N == len(chunks) fails
    just before the usage report). hang=True never sends the usage report.
    title=None makes title generation fail.
    """

    provider_name = "fake"

    def __init__(
        self,
        chunks: Optional[List[str]] = None,
        usage: Optional[TokenUsage] = None,
        fail_after: Optional[int] = None,
        hang: bool = False,
        title: Optional[str] = "Friendly Greeting",
        end_without_usage: bool = False,
    ):
        super().__init__()
        self.chunks = list(chunks or [])
        self.usage = usage or TokenUsage(prompt_tokens=5, completion_tokens=3)
        self.fail_after = fail_after
        self.hang = hang
        self.title = title
        self.end_without_usage = end_without_usage
        self.calls: List[Dict] = []
        self.title_requests: List[str] = []
        self.closed = False

    async def stream(self, messages, model, **kwargs):
        self.calls.append({"messages": list(messages), "model": model})
        try:
            for i, chunk in enumerate(self.chunks):
                if self.fail_after is not None and i >= self.fail_after:
                    raise ProviderError("upstream connection dropped")
                yield StreamChunk(content=chunk)
            if self.fail_after is not None and self.fail_after >= len(self.chunks):
                raise ProviderError("upstream connection dropped")
            if self.hang:
                await asyncio.sleep(3600)
            if self.end_without_usage:
                return
            yield StreamChunk(is_done=True, usage=self.usage)
        finally:
            self.closed = True

    async def generate(self, messages, model, max_tokens=None, **kwargs) -> LLMResponse:
        self.title_requests.append(messages[-1]["content"])
        if self.title is None:
            raise ProviderError("title request failed")
        return LLMResponse(content=self.title, model=model, provider=self.provider_name)


class TempStore:
    """A ConversationStore over a throwaway SQLite file."""

    def __init__(self, default_title: str = "New Chat"):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = str(Path(self._tmp.name) / "test.db")
        self.db = SQLiteDatabase(self.path)
        self.store = ConversationStore(self.db, default_title=default_title)

    async def open(self) -> ConversationStore:
        await self.db.connect()
        return self.store

    async def close(self) -> None:
        await self.db.close()
        self._tmp.cleanup()
