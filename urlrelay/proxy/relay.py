"""
Response Relay
==============

Performs the outbound call and hands the remote response back to the caller.

Header policy (response direction):
    - hop-by-hop headers are dropped (the ASGI server frames its own response)
    - headers that encode the remote origin's rendering policy are dropped:
      content-security-policy (and its report-only variant), x-frame-options,
      x-content-type-options
    - set-cookie / set-cookie2 are dropped unless ``relay_cookies`` is on
    - a marker header identifying the proxy is added

The body is relayed as raw bytes (no decompression) through a live stream:
the first chunk reaches the caller before the upstream transfer completes.
"""

import logging
from typing import AsyncIterator, List, Tuple

import httpx
from starlette.background import BackgroundTask
from starlette.responses import PlainTextResponse, Response, StreamingResponse

from urlrelay.config import ProxyConfig
from urlrelay.proxy.builder import OutboundRequest
from urlrelay.proxy.errors import RelayNetworkError

logger = logging.getLogger(__name__)

# Hop-by-hop headers that should NOT be relayed (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

REMOTE_POLICY_HEADERS = {
    "content-security-policy",
    "content-security-policy-report-only",
    "x-frame-options",
    "x-content-type-options",
}

COOKIE_HEADERS = {"set-cookie", "set-cookie2"}

RawHeaders = List[Tuple[bytes, bytes]]


async def stream_body(upstream: httpx.Response) -> AsyncIterator[bytes]:
    """
    Yield the upstream body chunk by chunk, closing the upstream response when
    the stream ends or the caller goes away.

    A response whose body was already read (e.g. one built in memory by a
    transport) is sent as a single chunk.
    """
    try:
        if upstream.is_stream_consumed:
            yield upstream.content
            return

        async for chunk in upstream.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        logger.warning(
            f"Upstream body stream failed: {e}",
            extra={"target_host": upstream.request.url.host},
        )
        raise
    finally:
        await upstream.aclose()


class ResponseRelay:
    """Sends outbound requests and relays sanitized, streamed responses."""

    def __init__(self, config: ProxyConfig, client: httpx.AsyncClient):
        self.config = config
        self.client = client

    def sanitize_headers(self, raw_headers: RawHeaders) -> RawHeaders:
        """
        Filter upstream headers for the relayed response.

        Duplicate headers (e.g. several Set-Cookie lines) are kept as-is.
        """
        dropped = HOP_BY_HOP_HEADERS | REMOTE_POLICY_HEADERS
        if not self.config.relay_cookies:
            dropped = dropped | COOKIE_HEADERS

        marker = self.config.marker_header.lower()
        headers = [
            (name, value)
            for name, value in raw_headers
            if name.decode("latin-1").lower() not in dropped
            and name.decode("latin-1").lower() != marker
        ]
        headers.append((marker.encode("latin-1"), self.config.marker_value.encode("latin-1")))
        return headers

    async def relay(self, outbound: OutboundRequest) -> Response:
        """
        Perform the outbound call and return the relayed response.

        Transport failures (connect errors, timeouts, redirect loops, ...)
        produce a synthetic 502 response instead of raising.
        """
        request = self.client.build_request(
            outbound.method,
            outbound.url,
            headers=outbound.headers,
            content=outbound.content,
        )

        try:
            upstream = await self.client.send(
                request,
                stream=True,
                follow_redirects=outbound.follow_redirects,
            )
        except httpx.HTTPError as e:
            logger.warning(
                f"Proxy fetch error for {request.url.host}: {e!r}",
                extra={"method": outbound.method, "target_host": request.url.host},
            )
            error = RelayNetworkError(f"Proxy fetch error: {e}")
            return PlainTextResponse(error.message, status_code=error.status_code)

        logger.info(
            f"Relaying {upstream.status_code} {upstream.reason_phrase} from {request.url.host}",
            extra={
                "method": outbound.method,
                "status_code": upstream.status_code,
                "redirects": len(upstream.history),
            },
        )

        response = StreamingResponse(
            stream_body(upstream),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        response.raw_headers = self.sanitize_headers(upstream.headers.raw)
        return response
