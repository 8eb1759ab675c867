"""
Shared fixtures for the URL relay test suite.
"""

from typing import Any, Callable, Dict, List, Optional, Union

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from urlrelay.config import ProxyConfig, Settings
from urlrelay.main import create_app


# ============================================================================
# Request Factory
# ============================================================================

def _build_request(
    method: str = "GET",
    path: str = "/uv/",
    query_string: bytes = b"",
    headers: Optional[Dict[str, str]] = None,
    body: bytes = b"",
    disconnect: bool = False,
) -> Request:
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("latin-1"),
        "root_path": "",
        "query_string": query_string,
        "headers": [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or {}).items()
        ],
        "server": ("testserver", 80),
        "client": ("127.0.0.1", 50000),
    }

    async def receive():
        if disconnect:
            return {"type": "http.disconnect"}
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


@pytest.fixture
def make_request() -> Callable[..., Request]:
    """Factory for Starlette requests that never touch a server"""
    return _build_request


# ============================================================================
# Configuration
# ============================================================================

@pytest.fixture
def proxy_config():
    """Default engine configuration"""
    return ProxyConfig()


@pytest.fixture
def mock_settings():
    """Settings for app-level tests"""
    return Settings(
        PROXY_PREFIX="/uv/",
        FOLLOW_REDIRECTS=True,
        RELAY_SET_COOKIE=False,
        CONFIG_UPDATE_SECRET=None,
        LOG_LEVEL="INFO",
    )


# ============================================================================
# Upstream Transport
# ============================================================================

class StreamedBody(httpx.AsyncByteStream):
    """Response body delivered chunk by chunk, as a network transport would."""

    def __init__(self, *chunks: bytes):
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk


class UpstreamRecorder:
    """
    Stand-in for remote origins.

    Records every outbound request and answers with ``handler`` (defaults to a
    plain 200). Responses built with ``respond`` carry an unread, streamed body.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = self.default_handler

    @staticmethod
    def respond(
        status_code: int,
        body: Union[bytes, str] = b"",
        headers: Optional[Any] = None,
    ) -> httpx.Response:
        if isinstance(body, str):
            body = body.encode("utf-8")
        chunks = (body,) if body else ()
        return httpx.Response(status_code, headers=headers, stream=StreamedBody(*chunks))

    def default_handler(self, request: httpx.Request) -> httpx.Response:
        return self.respond(200, "upstream ok", {"content-type": "text/plain"})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def upstream():
    """Recording upstream used by app-level tests"""
    return UpstreamRecorder()


@pytest.fixture
def app(mock_settings, upstream):
    """Application wired to the recording upstream"""
    return create_app(mock_settings, transport=httpx.MockTransport(upstream))


@pytest.fixture
def client(app):
    """Test client with lifespan (proxy installed and active)"""
    with TestClient(app) as test_client:
        yield test_client
