"""
URL Relay
=========

Transparent HTTP(S) URL-rewriting proxy.

Requests under a configurable prefix carry an encoded absolute target URL,
either in the path (``/uv/<token>``) or in a query parameter
(``/uv?u=<token>``). The proxy decodes the target, re-issues the request to the
remote origin without client credentials, and streams the response back with
the remote origin's rendering policy headers removed.

Modules:
- config: Environment settings and the immutable ProxyConfig
- models: Pydantic models for the control endpoints
- proxy: Codec, router, extractor, request builder, relay and facade
- main: FastAPI application factory and uvicorn entry point
"""

__version__ = "1.0.0"
