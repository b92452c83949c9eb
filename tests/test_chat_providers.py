"""
Tests for the single-shot providers: LocalLlmProvider (OpenAI-compatible
chat completions) and GeminiProvider (google-genai client mocked).
"""

import sys
import os
import asyncio
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from aiohttp import web
from aiohttp.test_utils import TestServer

from backend.errors import ConfigurationError, ProtocolError, StructuralError
from providers.base import ChatMessage
from providers.gemini_provider import GeminiProvider
from providers.local_llm_provider import LocalLlmProvider


def run_async(coro):
    """Helper to run async code in tests."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Test: LocalLlmProvider
# ---------------------------------------------------------------------------

class FakeChatServer:
    def __init__(self, reply, status=200):
        self.reply = reply
        self.status = status
        self.requests = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/v1/chat/completions", self.completions)
        return app

    async def completions(self, request):
        self.requests.append(await request.json())
        return web.json_response(self.reply, status=self.status)


async def chat_with(fake: FakeChatServer, messages):
    server = TestServer(fake.app())
    await server.start_server()
    provider = LocalLlmProvider(base_url=str(server.make_url("/")), model="local-model", retries=1)
    try:
        return await provider.chat(messages, temperature=0.3)
    finally:
        await provider.close()
        await server.close()


MESSAGES = [ChatMessage(role="system", content="validate"), ChatMessage(role="user", content="{}")]


class TestLocalLlmProvider(unittest.TestCase):

    def test_chat_returns_content(self):
        fake = FakeChatServer({"choices": [{"message": {"role": "assistant", "content": '{"ok": true}'}}]})
        self.assertEqual(run_async(chat_with(fake, MESSAGES)), '{"ok": true}')
        sent = fake.requests[0]
        self.assertEqual(sent["model"], "local-model")
        self.assertFalse(sent["stream"])
        self.assertEqual(sent["temperature"], 0.3)
        self.assertEqual(sent["messages"][0], {"role": "system", "content": "validate"})

    def test_malformed_reply(self):
        fake = FakeChatServer({"choices": []})
        with self.assertRaises(StructuralError):
            run_async(chat_with(fake, MESSAGES))

    def test_empty_content(self):
        fake = FakeChatServer({"choices": [{"message": {"content": ""}}]})
        with self.assertRaises(StructuralError):
            run_async(chat_with(fake, MESSAGES))

    def test_http_error(self):
        fake = FakeChatServer({"error": "no model loaded"}, status=400)
        with self.assertRaises(ProtocolError) as ctx:
            run_async(chat_with(fake, MESSAGES))
        self.assertEqual(ctx.exception.status, 400)


# ---------------------------------------------------------------------------
# Test: GeminiProvider
# ---------------------------------------------------------------------------

def mock_client(text):
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text=text))
    return client


class TestGeminiProvider(unittest.TestCase):

    def test_missing_key_is_config_error(self):
        with patch.dict(os.environ, {}, clear=True):
            provider = GeminiProvider(api_key="")
            with self.assertRaises(ConfigurationError) as ctx:
                run_async(provider.generate("x"))
        self.assertEqual(ctx.exception.phase, "config")

    def test_key_from_environment(self):
        with patch.dict(os.environ, {"GEMINI_API_KEY": "env-key"}):
            self.assertEqual(GeminiProvider().api_key, "env-key")

    def test_generate_json_mode(self):
        provider = GeminiProvider(api_key="k", model="gemini-2.5-flash")
        provider._client = mock_client('  {"workflow": {}}  ')
        text = run_async(provider.generate("two nodes", system_instruction="sys"))
        self.assertEqual(text, '{"workflow": {}}')
        kwargs = provider._client.aio.models.generate_content.await_args.kwargs
        self.assertEqual(kwargs["model"], "gemini-2.5-flash")
        self.assertEqual(kwargs["contents"], "two nodes")
        self.assertEqual(kwargs["config"].response_mime_type, "application/json")
        self.assertEqual(kwargs["config"].system_instruction, "sys")

    def test_empty_reply(self):
        provider = GeminiProvider(api_key="k")
        provider._client = mock_client(None)
        with self.assertRaises(StructuralError):
            run_async(provider.generate("x"))


if __name__ == "__main__":
    unittest.main()
