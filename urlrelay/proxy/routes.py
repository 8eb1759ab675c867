"""
Proxy Host Adapter - ASGI Integration
=====================================

Thin glue between the hosting runtime (FastAPI/Starlette on uvicorn) and the
proxy facade. Nothing in here knows how URLs are encoded or how headers are
sanitized.

Components:
-----------
1. ProxyInterceptMiddleware: asks ``route()`` about every HTTP request and
   hands matched ones to ``handle()``; everything else falls through to the
   application's own routes.
2. create_upstream_client: the shared httpx transport, configured so that no
   ambient credentials ever reach a remote origin.
3. control_router: runtime reconfiguration and link helper endpoints.

Endpoints:
----------
- POST /__urlrelay/config: apply a ``{"configUpdate": {...}}`` message
- GET  /__urlrelay/config: current configuration (non-callable fields)
- GET  /__urlrelay/encode: proxy links for a target URL
"""

import json
import logging
import secrets
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from urlrelay.config import CONTROL_PREFIX, Settings, get_settings
from urlrelay.models import EncodedLink
from urlrelay.proxy.builder import parse_target
from urlrelay.proxy.errors import InvalidTargetURL
from urlrelay.proxy.facade import ProxyFacade

logger = logging.getLogger(__name__)

control_router = APIRouter(prefix=CONTROL_PREFIX)

# Bodies are relayed undecoded
UPSTREAM_DEFAULT_HEADERS = {"Accept-Encoding": "identity"}


# ============================================================================
# Upstream Transport
# ============================================================================

def refusing_cookie_jar() -> CookieJar:
    """Cookie jar that neither stores nor sends any cookie."""
    return CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))


def create_upstream_client(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create the shared outbound HTTP client.

    Credentials are always omitted: ``trust_env=False`` keeps ``.netrc`` and
    proxy environment credentials out, and the cookie jar refuses every cookie
    so nothing set by one origin is replayed to another.
    Origins are asked for ``identity`` encoding, replacing httpx's default
    ``gzip, deflate``.

    Args:
        settings: Application settings (timeouts)
        transport: Optional transport override (tests use httpx.MockTransport)
    """
    timeout = httpx.Timeout(
        settings.UPSTREAM_TIMEOUT_SECONDS,
        connect=settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS,
    )
    return httpx.AsyncClient(
        timeout=timeout,
        headers=UPSTREAM_DEFAULT_HEADERS,
        trust_env=False,
        cookies=refusing_cookie_jar(),
        transport=transport,
    )


# ============================================================================
# Interception Middleware
# ============================================================================

class ProxyInterceptMiddleware:
    """
    ASGI middleware that lets the proxy take over matching requests.

    The facade is looked up on ``app.state.app_state.proxy`` for every request,
    so requests arriving before startup completes simply fall through.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        proxy = _facade_from_scope(scope)
        if proxy is None:
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        if not proxy.route(request):
            await self.app(scope, receive, send)
            return

        response = await proxy.handle(request)
        await response(scope, receive, send)


def _facade_from_scope(scope: Scope) -> Optional[ProxyFacade]:
    app = scope.get("app")
    app_state = getattr(getattr(app, "state", None), "app_state", None)
    return getattr(app_state, "proxy", None)


# ============================================================================
# Dependencies
# ============================================================================

def get_proxy(request: Request) -> ProxyFacade:
    """
    Get the proxy facade from app state.

    Raises:
        HTTPException: 503 if the proxy has not been activated yet
    """
    proxy = _facade_from_scope(request.scope)
    if proxy is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Proxy not initialized",
        )
    return proxy


def verify_control_secret(request: Request, x_internal_secret: Optional[str]) -> None:
    """
    Enforce CONFIG_UPDATE_SECRET of the running app when it is configured.

    Raises:
        HTTPException: 401 if the secret is missing or wrong
    """
    app_state = getattr(request.app.state, "app_state", None)
    settings = getattr(app_state, "settings", None) or get_settings()
    expected = settings.CONFIG_UPDATE_SECRET
    if not expected:
        return

    if not x_internal_secret or not secrets.compare_digest(x_internal_secret, expected):
        logger.warning("Config update rejected: invalid or missing X-Internal-Secret header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid or missing X-Internal-Secret header",
        )


# ============================================================================
# Control Endpoints
# ============================================================================

@control_router.post("/config")
async def update_config(
    request: Request,
    x_internal_secret: Optional[str] = Header(None, alias="X-Internal-Secret"),
) -> JSONResponse:
    """
    Apply a runtime reconfiguration message.

    The body is read raw so malformed payloads are reported through the
    acknowledgment (``{"ok": false, "error": ...}``) rather than a framework
    validation error.
    """
    verify_control_secret(request, x_internal_secret)
    proxy = get_proxy(request)

    try:
        message: Any = json.loads(await request.body() or b"null")
    except ValueError as e:
        ack: Dict[str, Any] = {"ok": False, "error": f"Invalid JSON: {e}"}
    else:
        ack = proxy.on_config_update(message)

    status_code = status.HTTP_200_OK if ack["ok"] else status.HTTP_422_UNPROCESSABLE_ENTITY
    return JSONResponse(ack, status_code=status_code)


@control_router.get("/config")
async def read_config(request: Request) -> Dict[str, Any]:
    """Current proxy configuration."""
    return get_proxy(request).config.describe()


@control_router.get("/encode", response_model=EncodedLink)
async def encode_link(
    request: Request,
    url: str = Query(..., description="Absolute http(s) URL to proxy"),
) -> EncodedLink:
    """Build path-style and query-style proxy links for ``url``."""
    config = get_proxy(request).config

    try:
        parse_target(url)
    except InvalidTargetURL as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    token = config.encode(url)
    return EncodedLink(
        url=url,
        token=token,
        path=f"{config.prefix}{token}",
        query=f"{config.prefix.rstrip('/')}?{urlencode({config.query_param: token})}",
    )
