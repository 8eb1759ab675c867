"""
Proxy Package
=============

The request-interception and relay engine.

Main Components:
----------------
- codec.py: URL <-> token encoding, DecodeError
- router.py: Interception predicate
- extractor.py: Target URL recovery from path or query tokens
- builder.py: Outbound request construction (method tunneling, header allow-list)
- relay.py: Outbound call, response header sanitization, streamed body
- facade.py: route/handle composition, host hooks, runtime reconfiguration
- routes.py: ASGI interception middleware and control endpoints

Usage:
------
    from urlrelay.proxy.facade import ProxyFacade
    proxy = ProxyFacade(config, httpx.AsyncClient())
    if proxy.route(request):
        response = await proxy.handle(request)

Only the codec and error taxonomy are re-exported here; the remaining modules
depend on ``urlrelay.config``, which itself imports the codec.
"""

from .codec import DecodeError, decode, encode, raw_decode
from .errors import (
    BodyReadError,
    InvalidTargetError,
    InvalidTargetURL,
    NoTargetFound,
    ProxyError,
    RelayNetworkError,
    RequestBuildError,
    UndecodableTarget,
)

__all__ = [
    "DecodeError",
    "decode",
    "encode",
    "raw_decode",
    "BodyReadError",
    "InvalidTargetError",
    "InvalidTargetURL",
    "NoTargetFound",
    "ProxyError",
    "RelayNetworkError",
    "RequestBuildError",
    "UndecodableTarget",
]
