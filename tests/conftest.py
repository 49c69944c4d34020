"""
Relay test configuration.

Fixtures:
- upstream: call-counting stand-in for imgproxy (an httpx MockTransport handler)
- http_client: AsyncClient wired to the stand-in, no network involved
- relay_handler: RelayHandler using that client

Helpers for building streamed bodies and asserting on sinks live here too.
"""

import sys
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import pytest

# Make the package importable without installing it
sys.path.insert(0, str(Path(__file__).parent.parent))

from imgproxy_relay.config import RelayConfig, SigningCredential
from imgproxy_relay.relay import RelayHandler


UPSTREAM_URL = "http://imgproxy.test:8080"

TEST_KEY = "943b421c9eb07c830af81030552c86009268de4e532ba2ee2eab8247c6da0881"
TEST_SALT = "520f986b998545b4785e0defbc4f3c1203f22de2374a3d53cb7a7fe9fea309c5"

PNG_BODY = b"\x89PNG\r\n\x1a\n" + bytes(range(256)) * 40


async def stream_body(data: bytes, chunk_size: int = 1024):
    """Yield `data` in chunks, like a network body."""
    for i in range(0, len(data), chunk_size):
        yield data[i:i + chunk_size]


class UpstreamStub:
    """
    imgproxy stand-in.

    Records every request. Either answers with a streamed body or raises
    `error` to simulate a transport failure.
    """

    def __init__(
        self,
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
        body: bytes = b"",
        chunk_size: int = 1024,
        error: Optional[Exception] = None,
        stream: Optional[httpx.AsyncByteStream] = None,
    ):
        self.status_code = status_code
        self.headers = headers or {}
        self.body = body
        self.chunk_size = chunk_size
        self.error = error
        self.stream = stream
        self.requests: List[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.stream is not None:
            return httpx.Response(self.status_code, headers=self.headers, stream=self.stream)
        return httpx.Response(
            self.status_code,
            headers=self.headers,
            content=stream_body(self.body, self.chunk_size),
        )


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def signing_credential():
    return SigningCredential(key=TEST_KEY, salt=TEST_SALT)


@pytest.fixture
def upstream():
    """imgproxy answering 200 with a PNG body."""
    return UpstreamStub(
        status_code=200,
        headers={
            "content-type": "image/png",
            "content-length": str(len(PNG_BODY)),
            "cache-control": "max-age=31536000",
            "x-imgproxy-internal": "secret",
        },
        body=PNG_BODY,
    )


@pytest.fixture
async def http_client(upstream):
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
        yield client


@pytest.fixture
async def relay_handler(http_client):
    handler = RelayHandler(UPSTREAM_URL, RelayConfig(), client=http_client)
    yield handler
    await handler.aclose()


@pytest.fixture
async def make_handler():
    """
    Factory for handlers bound to their own upstream stub.

    Handlers and their clients are closed on teardown.
    """
    created: List[RelayHandler] = []

    def factory(upstream: "UpstreamStub", base_url: str = UPSTREAM_URL, **config) -> RelayHandler:
        client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        handler = RelayHandler(base_url, RelayConfig(**config), client=client)
        created.append(handler)
        return handler

    yield factory
    for handler in created:
        await handler.aclose()
        await handler.client.aclose()


# ============================================
# Helper Functions
# ============================================

def assert_empty_error(sink, status_code: int):
    """Assert the sink ended with an error status and no body."""
    assert sink.ended, "Sink should be ended"
    assert sink.status_code == status_code, \
        f"Expected status {status_code}, got {sink.status_code}"
    assert sink.body == b"", f"Expected empty body, got {len(sink.body)} bytes"
