"""
Proxy Errors
============

Failure taxonomy for the interception and relay engine.

Every error carries the HTTP status the facade answers with, so the single
public handler can turn any failure into a response without a lookup table:

    NoTargetFound        400  no token in path or query
    UndecodableTarget    400  token present but neither decode stage worked
    InvalidTargetURL     400  decoded value is not an absolute http(s) URL
    RequestBuildError    500  outbound request could not be constructed
    BodyReadError        500  inbound body could not be read
    RelayNetworkError    502  outbound call failed, timed out or was refused
"""

from fastapi import status


class ProxyError(Exception):
    """Base class for failures that map to a proxy response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Proxy error"

    def __init__(self, message: str = ""):
        self.message = message or self.default_message
        super().__init__(self.message)


class NoTargetFound(ProxyError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Missing or invalid proxied URL"


class UndecodableTarget(NoTargetFound):
    default_message = "Proxied URL token could not be decoded"


class InvalidTargetURL(ProxyError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Decoded target is not a valid URL"


# Name used by the request builder contract
InvalidTargetError = InvalidTargetURL


class RequestBuildError(ProxyError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Failed to build remote request"


class BodyReadError(RequestBuildError):
    default_message = "Failed to read request body"


class RelayNetworkError(ProxyError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Proxy fetch error"


__all__ = [
    "ProxyError",
    "NoTargetFound",
    "UndecodableTarget",
    "InvalidTargetURL",
    "InvalidTargetError",
    "RequestBuildError",
    "BodyReadError",
    "RelayNetworkError",
]
