"""
Request Builder
===============

Turns an intercepted request and its decoded target into the outbound request.

Method derivation, in order of precedence:
    1. POST carrying the method-override header: the overridden method is
       used, the full body is forwarded under the inbound content type
       (``application/octet-stream`` when absent). This is how callers limited
       to GET/POST tunnel PUT/DELETE/PATCH.
    2. GET, HEAD, DELETE, PUT: forwarded as-is with allow-listed headers.
       PUT and DELETE bodies are read best-effort and sent only if non-empty.
    3. Anything else: forwarded unmodified with no headers and no body.

Security:
    Only the allow-list below is ever copied from the client. Cookie and
    Authorization headers never reach the remote origin, and outbound calls are
    always made with ``credentials="omit"``.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx
from starlette.requests import ClientDisconnect, Request

from urlrelay.config import ProxyConfig
from urlrelay.proxy.errors import BodyReadError, InvalidTargetError, RequestBuildError

logger = logging.getLogger(__name__)

FORWARDED_HEADERS = (
    "accept",
    "accept-language",
    "user-agent",
    "content-type",
    "referer",
    "origin",
)

PASSTHROUGH_METHODS = {"GET", "HEAD", "DELETE", "PUT"}
BODY_METHODS = {"PUT", "DELETE"}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# RFC 9110 token
_METHOD_PATTERN = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Z-]+$")


@dataclass(frozen=True)
class OutboundRequest:
    """Request to be issued against the remote origin."""

    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    content: Optional[bytes] = None
    follow_redirects: bool = True
    credentials: str = "omit"


def parse_target(target: str) -> httpx.URL:
    """
    Parse a decoded target as an absolute http(s) URL.

    Raises:
        InvalidTargetError: If the target is relative, not http(s), or unparseable
    """
    try:
        url = httpx.URL(target)
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise InvalidTargetError(f"Decoded target is not a valid URL: {target}") from e

    if url.scheme not in ("http", "https") or not url.host:
        raise InvalidTargetError(f"Decoded target is not a valid URL: {target}")

    return url


def forward_headers(request: Request) -> Dict[str, str]:
    """Copy the allow-listed headers from the inbound request."""
    return {
        name: request.headers[name]
        for name in FORWARDED_HEADERS
        if name in request.headers
    }


class RequestBuilder:
    """Builds ``OutboundRequest`` objects for one proxy configuration."""

    def __init__(self, config: ProxyConfig):
        self.config = config

    def _override_method(self, request: Request) -> Optional[str]:
        if request.method != "POST":
            return None

        value = request.headers.get(self.config.method_override_header)
        if not value or not value.strip():
            return None

        method = value.strip().upper()
        if not _METHOD_PATTERN.match(method):
            raise RequestBuildError(f"Invalid tunneled method: {value!r}")
        return method

    async def _read_body(self, request: Request) -> bytes:
        try:
            return await request.body()
        except ClientDisconnect as e:
            raise BodyReadError("Client disconnected while sending the request body") from e
        except Exception as e:
            raise BodyReadError(f"Failed to read request body: {e}") from e

    async def build(self, request: Request, target: str) -> OutboundRequest:
        """
        Construct the outbound request for ``target``.

        Suspends while reading the inbound body (tunneled requests and PUT/DELETE).

        Raises:
            InvalidTargetError: Target is not an absolute http(s) URL
            BodyReadError: The body of a tunneled request could not be read
            RequestBuildError: The tunneled method is not a valid HTTP token
        """
        url = str(parse_target(target))
        follow = self.config.follow_redirects

        override = self._override_method(request)
        if override:
            body = await self._read_body(request)
            headers = {"content-type": request.headers.get("content-type") or DEFAULT_CONTENT_TYPE}
            logger.debug(f"Tunneled {override} via POST ({len(body)} bytes)")
            return OutboundRequest(
                method=override,
                url=url,
                headers=headers,
                content=body or None,
                follow_redirects=follow,
            )

        if request.method in PASSTHROUGH_METHODS:
            content = None
            if request.method in BODY_METHODS:
                try:
                    content = await self._read_body(request) or None
                except BodyReadError as e:
                    logger.info(f"Ignoring unreadable {request.method} body: {e}")

            return OutboundRequest(
                method=request.method,
                url=url,
                headers=forward_headers(request),
                content=content,
                follow_redirects=follow,
            )

        return OutboundRequest(method=request.method, url=url, follow_redirects=follow)
