import asyncio
import json

import httpx
import pytest

from chatbridge.catalog import get_model
from chatbridge.credentials import StaticCredentialStore
from chatbridge.types import Provider


class RecordingHandler:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status_code=200, *, json_body=None, content=b"", headers=None):
        self.status_code = status_code
        self.json_body = json_body
        self.content = content
        self.headers = headers or {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.json_body is not None:
            return httpx.Response(self.status_code, json=self.json_body, headers=self.headers)
        content = self.content() if callable(self.content) else self.content
        return httpx.Response(self.status_code, content=content, headers=self.headers)

    @property
    def last_body(self):
        return json.loads(self.requests[-1].content)


def sse(*lines: str) -> bytes:
    """Join raw stream lines into a response body."""
    return ("\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture
def credentials():
    """Credential store holding a key for every provider."""
    return StaticCredentialStore({
        Provider.OPENAI: "sk-test-openai",
        Provider.ANTHROPIC: "sk-test-anthropic",
        Provider.GOOGLE: "AIza-test-google",
    })


@pytest.fixture
def empty_credentials():
    return StaticCredentialStore()


@pytest.fixture
def mock_client():
    """Build an AsyncClient routed through a RecordingHandler."""

    def _make(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def gpt52():
    return get_model("gpt-5.2")


@pytest.fixture
def gpt4o():
    return get_model("gpt-4o")


@pytest.fixture
def claude():
    return get_model("claude-sonnet-4-5-20250929")


@pytest.fixture
def gemini_pro():
    return get_model("gemini-3-pro-preview")


@pytest.fixture
def gemini_flash():
    return get_model("gemini-2.5-flash")


class EndlessBody(httpx.AsyncByteStream):
    """Response body that repeats one stream record until it is closed."""

    def __init__(self, record: bytes):
        self.record = record
        self.chunks_read = 0
        self.closed = False

    async def __aiter__(self):
        while not self.closed:
            self.chunks_read += 1
            yield self.record
            await asyncio.sleep(0)

    async def aclose(self):
        self.closed = True
