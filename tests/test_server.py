"""
Tests for the generation backend's HTTP surface, with a fake Ollama.

Uses FastAPI's TestClient (httpx) inside the lifespan context.
"""

import sys
import os
import json
import shutil
import tempfile
import unittest
from unittest.mock import AsyncMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from fastapi.testclient import TestClient

from backend.errors import ProtocolError, TransportError, UpstreamError
from backend.middleware import debug_logger as debug_logger_module
from backend.payload_extractor import JSON_SEPARATOR
from backend.server import create_app
from backend.stream_consumer import StreamConsumer
from settings import MemoryStorage, SettingsManager


GRAPH = {"nodes": [{"id": 1, "type": "CheckpointLoaderSimple"}], "links": []}


class FakeOllama:
    """Yields canned tokens; optionally fails after them."""

    def __init__(self, tokens=None, error=None):
        self.tokens = tokens or []
        self.error = error
        self.calls = []
        self.close = AsyncMock()
        self.health_check = AsyncMock(return_value={"status": "online", "model_count": 2})

    async def generate_stream(self, model, prompt, system="", base_url=None):
        self.calls.append({"model": model, "prompt": prompt, "system": system, "base_url": base_url})
        for token in self.tokens:
            yield token
        if self.error:
            raise self.error

    async def generate(self, model, prompt, system="", base_url=None):
        parts = []
        async for token in self.generate_stream(model, prompt, system, base_url):
            parts.append(token)
        return "".join(parts)


def make_client(ollama, overrides=None):
    settings = SettingsManager(MemoryStorage(overrides))
    return TestClient(create_app(settings, ollama=ollama))


def read_records(response):
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


STREAM_BODY = {
    "prompt": "a basic SDXL workflow",
    "model": "llama3.1:8b",
    "system_prompt": "be terse",
    "ollama_url": "http://gpu-box:11434",
}


# ---------------------------------------------------------------------------
# Test: POST /v1/generate_workflow_stream
# ---------------------------------------------------------------------------

class TestStreamEndpoint(unittest.TestCase):

    def test_records_in_order(self):
        ollama = FakeOllama(tokens=["THOUGHTS: ", "one node", JSON_SEPARATOR, json.dumps({"workflow": GRAPH})])
        with make_client(ollama) as client:
            response = client.post("/v1/generate_workflow_stream", json=STREAM_BODY)

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("application/x-ndjson"))
        records = read_records(response)
        self.assertEqual([r["type"] for r in records],
                         ["status", "status", "token", "token", "token", "token", "status"])
        self.assertEqual(records[0]["data"], "Sending request to llama3.1:8b...")
        self.assertEqual("".join(r["data"] for r in records if r["type"] == "token"),
                         "THOUGHTS: one node" + JSON_SEPARATOR + json.dumps({"workflow": GRAPH}))
        self.assertEqual(records[-1]["data"], "Generation complete.")

    def test_request_forwarded(self):
        ollama = FakeOllama(tokens=["x"])
        with make_client(ollama) as client:
            client.post("/v1/generate_workflow_stream", json=STREAM_BODY)
        self.assertEqual(ollama.calls[0], {
            "model": "llama3.1:8b",
            "prompt": "a basic SDXL workflow",
            "system": "be terse",
            "base_url": "http://gpu-box:11434",
        })

    def test_tokens_with_newlines_stay_one_record_each(self):
        ollama = FakeOllama(tokens=["line one\nline two", "\n"])
        with make_client(ollama) as client:
            response = client.post("/v1/generate_workflow_stream", json=STREAM_BODY)
        tokens = [r["data"] for r in read_records(response) if r["type"] == "token"]
        self.assertEqual(tokens, ["line one\nline two", "\n"])

    def test_upstream_failure_becomes_status(self):
        error = TransportError("http://gpu-box:11434/api/generate", "ClientConnectorError: refused")
        ollama = FakeOllama(tokens=["THOUGHTS: partial"], error=error)
        with make_client(ollama) as client:
            response = client.post("/v1/generate_workflow_stream", json=STREAM_BODY)
        records = read_records(response)
        self.assertEqual(records[-1]["type"], "status")
        self.assertTrue(records[-1]["data"].startswith("Error: Failed to connect to http://gpu-box:11434"))

    def test_upstream_failure_reaches_consumer_as_network_error(self):
        error = TransportError("http://gpu-box:11434/api/generate", "ClientConnectorError: refused")
        ollama = FakeOllama(tokens=["THOUGHTS: partial"], error=error)
        with make_client(ollama) as client:
            response = client.post("/v1/generate_workflow_stream", json=STREAM_BODY)
        consumer = StreamConsumer()
        with self.assertRaises(UpstreamError) as ctx:
            consumer.feed(response.content)
            consumer.finish()
        self.assertEqual(ctx.exception.phase, "network")
        self.assertEqual(ctx.exception.detail, error.detail)

    def test_missing_fields_rejected(self):
        with make_client(FakeOllama()) as client:
            response = client.post("/v1/generate_workflow_stream", json={"prompt": "x"})
        self.assertEqual(response.status_code, 422)


# ---------------------------------------------------------------------------
# Test: POST /api/generate-workflow
# ---------------------------------------------------------------------------

class TestGenerateWorkflowEndpoint(unittest.TestCase):

    def test_returns_bare_workflow(self):
        text = f"THOUGHTS: easy\n{JSON_SEPARATOR}\n" + json.dumps({"workflow": GRAPH})
        ollama = FakeOllama(tokens=[text])
        with make_client(ollama, {"providers": {"ollama": {"model": "mistral"}}}) as client:
            response = client.post("/api/generate-workflow", json={"prompt": "one checkpoint"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), GRAPH)
        self.assertEqual(ollama.calls[0]["model"], "mistral")
        self.assertIn(JSON_SEPARATOR, ollama.calls[0]["system"])

    def test_unrecoverable_output_is_422(self):
        ollama = FakeOllama(tokens=["I cannot do that."])
        with make_client(ollama) as client:
            response = client.post("/api/generate-workflow", json={"prompt": "x"})
        self.assertEqual(response.status_code, 422)
        self.assertIn("[extraction]", response.json()["detail"])

    def test_upstream_error_is_502(self):
        ollama = FakeOllama(error=ProtocolError(404, "model not found"))
        with make_client(ollama) as client:
            response = client.post("/api/generate-workflow", json={"prompt": "x", "model": "nope"})
        self.assertEqual(response.status_code, 502)
        self.assertIn("model not found", response.json()["detail"])


# ---------------------------------------------------------------------------
# Test: health, lifespan, debug log
# ---------------------------------------------------------------------------

class TestAppLifecycle(unittest.TestCase):

    def test_health(self):
        with make_client(FakeOllama()) as client:
            response = client.get("/api/health")
        self.assertEqual(response.json(), {"status": "healthy", "ollama": {"status": "online", "model_count": 2}})

    def test_provider_closed_on_shutdown(self):
        ollama = FakeOllama()
        with make_client(ollama):
            pass
        ollama.close.assert_awaited_once()

    def test_debug_log_written(self):
        temp_dir = tempfile.mkdtemp()
        try:
            ollama = FakeOllama(tokens=["{\"nodes\": [], \"links\": []}"])
            with make_client(ollama, {"server": {"debug_log_dir": temp_dir}}) as client:
                client.post("/v1/generate_workflow_stream", json=STREAM_BODY)
                client.post("/api/generate-workflow", json={"prompt": "x"})
            with open(os.path.join(temp_dir, "debug.log"), "r", encoding="utf-8") as f:
                log = f.read()
            self.assertIn("[REQ] >>> POST /v1/generate_workflow_stream", log)
            self.assertIn("<stream application/x-ndjson", log)
            self.assertIn('[RES] <<< POST /api/generate-workflow  200', log)
        finally:
            for handler in debug_logger_module.debug_logger.handlers:
                handler.close()
            debug_logger_module.debug_logger.handlers.clear()
            shutil.rmtree(temp_dir, ignore_errors=True)


if __name__ == "__main__":
    unittest.main()
