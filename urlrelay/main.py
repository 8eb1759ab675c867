"""
FastAPI Proxy Application Factory
=================================

Entry point for the URL relay service.

Architecture:
    Client -> Interception middleware -> Proxy facade -> Remote origin

    Requests under PROXY_PREFIX (path style ``/uv/<token>`` or query style
    ``/uv?u=<token>``) are taken over by the proxy before routing. Everything
    else reaches the service's own routes.

Routes:
    - /__urlrelay/* : Runtime reconfiguration and link helpers
    - /health       : Health check endpoint
    - /             : Service metadata

Environment Variables:
    See urlrelay/config.py (PROXY_PREFIX, FOLLOW_REDIRECTS, RELAY_SET_COOKIE,
    UPSTREAM_TIMEOUT_SECONDS, CONFIG_UPDATE_SECRET, LOG_LEVEL, ...)

Running the Service:
    Development:
        uvicorn urlrelay.main:app --reload --host 0.0.0.0 --port 8080

    Production:
        uvicorn urlrelay.main:app --host 0.0.0.0 --port 8080 --workers 4

    With custom log level:
        LOG_LEVEL=DEBUG uvicorn urlrelay.main:app --reload
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from urlrelay import __version__
from urlrelay.config import Settings, get_settings, validate_configuration
from urlrelay.models import ErrorResponse, HealthResponse
from urlrelay.proxy.facade import ProxyFacade
from urlrelay.proxy.routes import (
    ProxyInterceptMiddleware,
    control_router,
    create_upstream_client,
)


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


class AppState:
    """
    Application state container.

    Holds the resources shared by all requests: settings, the upstream HTTP
    client and the proxy facade.
    """
    def __init__(self, settings: Settings):
        self.settings = settings
        self.upstream_client: Optional[httpx.AsyncClient] = None
        self.proxy: Optional[ProxyFacade] = None


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management (proxy install/activate, client shutdown)
        - Proxy interception middleware
        - Control and system routes
        - Exception handlers

    Args:
        settings: Settings to run with (defaults to environment settings)
        transport: Optional httpx transport for the upstream client

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    app_state = AppState(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: configure logging, create the upstream client, then install
        and activate the proxy. Shutdown: close the upstream client.
        """
        setup_logging(settings.LOG_LEVEL)
        logger = logging.getLogger("urlrelay.main")

        report = validate_configuration(settings)
        for warning in report["warnings"]:
            logger.warning(warning)
        for error in report["errors"]:
            logger.error(error)

        client = create_upstream_client(settings, transport=transport)
        proxy = ProxyFacade(settings.to_proxy_config(), client)
        proxy.on_install()

        app_state.upstream_client = client
        app_state.proxy = proxy
        proxy.on_activate()

        logger.info(
            "URL relay started",
            extra={"service": "urlrelay", "version": __version__},
        )

        yield

        logger.info("Shutting down URL relay")
        app_state.proxy = None
        await client.aclose()
        logger.info("Closed upstream client")

    app = FastAPI(
        title="URL Relay",
        description="URL-rewriting HTTP(S) proxy with header sanitization and streamed relay",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.app_state = app_state

    app.add_middleware(ProxyInterceptMiddleware)

    app.include_router(control_router, tags=["Proxy Control"])

    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="ok" if app_state.proxy is not None else "starting",
            service="urlrelay",
            version=__version__,
        )

    @app.get("/", tags=["System"])
    async def root() -> Dict[str, object]:
        """Service metadata and available endpoints."""
        proxy = app_state.proxy
        return {
            "service": "urlrelay",
            "version": __version__,
            "description": "URL-rewriting HTTP(S) proxy",
            "prefix": proxy.config.prefix if proxy else settings.PROXY_PREFIX,
            "endpoints": {
                "health": "/health",
                "docs": "/docs",
                "config": "/__urlrelay/config",
                "encode": "/__urlrelay/encode",
            },
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors on non-proxied routes.
        """
        logger = logging.getLogger("urlrelay.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        body = ErrorResponse(
            error="internal_server_error",
            message="An unexpected error occurred",
            details={"exception": str(exc)} if settings.LOG_LEVEL == "DEBUG" else None,
        )
        return JSONResponse(status_code=500, content=body.model_dump(mode="json"))

    return app


# Create app instance for uvicorn
app = create_app()


def main() -> None:
    """Console entry point: run the service with uvicorn."""
    settings = get_settings()

    uvicorn.run(
        "urlrelay.main:app",
        host=settings.PROXY_HOST,
        port=settings.PROXY_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    main()
