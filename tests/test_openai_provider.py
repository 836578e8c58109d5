import json
import unittest

import httpx

from llm.base import TITLE_FALLBACK
from llm.factory import create_provider, get_available_providers
from llm.openai_provider import OpenAIProvider
from relay_fakes import make_settings
from utils.errors import ProviderError


def sse_body(*payloads, done: bool = True) -> bytes:
    lines = [f"data: {json.dumps(p) if not isinstance(p, str) else p}\n\n" for p in payloads]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def delta(text: str) -> dict:
    return {"choices": [{"index": 0, "delta": {"content": text}}]}


USAGE = {"choices": [], "usage": {"prompt_tokens": 5, "completion_tokens": 3, "total_tokens": 8}}


class OpenAIProviderStreamTests(unittest.IsolatedAsyncioTestCase):
    def _provider(self, handler) -> OpenAIProvider:
        self.requests = []

        def recording(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        return OpenAIProvider(
            api_key="sk-test",
            base_url="https://llm.example/v1/",
            transport=httpx.MockTransport(recording),
        )

    async def _collect(self, provider: OpenAIProvider) -> list:
        messages = [{"role": "user", "content": "Hello"}]
        return [chunk async for chunk in provider.stream(messages, "gpt-4o-mini")]

    async def test_streams_deltas_then_usage(self) -> None:
        body = sse_body({"choices": [{"delta": {"role": "assistant"}}]}, delta("Hi"), delta(" there"), USAGE)
        provider = self._provider(lambda r: httpx.Response(200, content=body))

        chunks = await self._collect(provider)

        self.assertEqual(["Hi", " there"], [c.content for c in chunks if not c.is_done])
        self.assertTrue(chunks[-1].is_done)
        self.assertEqual((5, 3), (chunks[-1].usage.prompt_tokens, chunks[-1].usage.completion_tokens))

        request = self.requests[0]
        self.assertEqual("https://llm.example/v1/chat/completions", str(request.url))
        self.assertEqual("Bearer sk-test", request.headers["authorization"])
        payload = json.loads(request.content)
        self.assertTrue(payload["stream"])
        self.assertEqual({"include_usage": True}, payload["stream_options"])
        self.assertEqual("gpt-4o-mini", payload["model"])

    async def test_missing_usage_reports_zero(self) -> None:
        provider = self._provider(lambda r: httpx.Response(200, content=sse_body(delta("ok"))))
        chunks = await self._collect(provider)
        self.assertEqual(0, chunks[-1].usage.total_tokens)

    async def test_malformed_line_is_skipped(self) -> None:
        body = sse_body("{broken", delta("ok"), USAGE)
        provider = self._provider(lambda r: httpx.Response(200, content=body))
        chunks = await self._collect(provider)
        self.assertEqual(["ok"], [c.content for c in chunks if not c.is_done])

    async def test_http_error_status_raises(self) -> None:
        provider = self._provider(lambda r: httpx.Response(429, json={"error": {"message": "slow down"}}))
        with self.assertRaises(ProviderError) as ctx:
            await self._collect(provider)
        self.assertEqual(429, ctx.exception.status_code)

    async def test_error_chunk_raises(self) -> None:
        body = sse_body(delta("Hi"), {"error": {"message": "overloaded"}})
        provider = self._provider(lambda r: httpx.Response(200, content=body))
        with self.assertRaises(ProviderError):
            await self._collect(provider)

    async def test_stream_cut_before_done_raises(self) -> None:
        body = sse_body(delta("Hi"), done=False)
        provider = self._provider(lambda r: httpx.Response(200, content=body))
        with self.assertRaises(ProviderError):
            await self._collect(provider)

    async def test_connection_failure_raises(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(ProviderError):
            await self._collect(self._provider(refuse))


class OpenAIProviderGenerateTests(unittest.IsolatedAsyncioTestCase):
    def _provider(self, response: httpx.Response) -> OpenAIProvider:
        self.payloads = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.payloads.append(json.loads(request.content))
            return response

        return OpenAIProvider(api_key="sk-test", transport=httpx.MockTransport(handler))

    async def test_title_is_cleaned_up(self) -> None:
        provider = self._provider(httpx.Response(
            200,
            json={"choices": [{"message": {"content": ' "Greeting the assistant" '}, "finish_reason": "stop"}]},
        ))
        title = await provider.generate_title("Hello", model="gpt-4o-mini", max_tokens=20)

        self.assertEqual("Greeting the assistant", title)
        self.assertEqual(20, self.payloads[0]["max_tokens"])
        self.assertEqual("system", self.payloads[0]["messages"][0]["role"])
        self.assertEqual({"role": "user", "content": "Hello"}, self.payloads[0]["messages"][1])

    async def test_title_is_capped(self) -> None:
        provider = self._provider(httpx.Response(200, json={"choices": [{"message": {"content": "x" * 300}}]}))
        title = await provider.generate_title("Hello", model="gpt-4o-mini")
        self.assertEqual(100, len(title))

    async def test_title_falls_back_on_failure(self) -> None:
        provider = self._provider(httpx.Response(500, json={"error": {"message": "boom"}}))
        self.assertEqual(TITLE_FALLBACK, await provider.generate_title("Hello", model="gpt-4o-mini"))

    async def test_title_failure_returns_callers_fallback(self) -> None:
        provider = self._provider(httpx.Response(500, json={"error": {"message": "boom"}}))
        title = await provider.generate_title("Hello", model="gpt-4o-mini", fallback="Untitled")
        self.assertEqual("Untitled", title)

    async def test_empty_title_returns_callers_fallback(self) -> None:
        provider = self._provider(httpx.Response(200, json={"choices": [{"message": {"content": ' "" '}}]}))
        title = await provider.generate_title("Hello", model="gpt-4o-mini", fallback="Untitled")
        self.assertEqual("Untitled", title)

    async def test_generate_wraps_http_errors(self) -> None:
        provider = self._provider(httpx.Response(401, json={}))
        with self.assertRaises(ProviderError) as ctx:
            await provider.generate([{"role": "user", "content": "hi"}], "gpt-4o-mini")
        self.assertEqual(401, ctx.exception.status_code)


class ProviderFactoryTests(unittest.TestCase):
    def test_creates_configured_provider(self) -> None:
        settings = make_settings(openai_api_key="sk-x", openai_base_url="http://local:1234/v1")
        provider = create_provider(settings)
        self.assertIsInstance(provider, OpenAIProvider)
        self.assertEqual("sk-x", provider.api_key)
        self.assertEqual("http://local:1234/v1", provider.base_url)

    def test_unknown_provider_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            create_provider(make_settings(), provider_name="nope")
        self.assertEqual(["openai"], get_available_providers())


if __name__ == "__main__":
    unittest.main()
