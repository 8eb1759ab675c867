"""
URL Codec
=========

Reversible encoding of an absolute URL into a token that can sit in a path
segment or a query string value.

Tokens are the percent-encoded URL (same safe set as the browser's
``encodeURIComponent``) wrapped in URL-safe base64 without padding, so a token
only ever contains ``A-Z a-z 0-9 - _``.

Decoding is lenient about the envelope and strict about the content:
    - standard and URL-safe base64 alphabets are both accepted, so tokens made
      by browser clients as ``btoa(encodeURIComponent(url))`` decode too
    - missing ``=`` padding is restored
    - a ``+`` turned into a space by query-string decoding is put back
    - malformed percent escapes in the payload raise ``DecodeError``

``raw_decode`` is the documented fallback transform: the base64 payload read
as a Latin-1 "binary string", without percent-decoding.
"""

import base64
import binascii
from urllib.parse import quote, unquote

# Characters encodeURIComponent leaves alone besides alphanumerics and "-_.~"
_COMPONENT_SAFE = "!~*'()"


class DecodeError(ValueError):
    """Raised when a token cannot be turned back into a URL."""

    def __init__(self, token: str, reason: str = ""):
        self.token = token
        self.reason = reason
        message = f"Cannot decode token {token[:64]!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


def encode(url: str) -> str:
    """
    Encode an absolute URL into a path- and query-safe token.

    Example:
        >>> encode("https://example.com/")
        'aHR0cHMlM0ElMkYlMkZleGFtcGxlLmNvbSUyRg'
    """
    component = quote(url, safe=_COMPONENT_SAFE)
    return base64.urlsafe_b64encode(component.encode("ascii")).decode("ascii").rstrip("=")


def _b64decode(token: str) -> bytes:
    if not isinstance(token, str):
        raise DecodeError(repr(token), "token is not a string")

    cleaned = token.replace(" ", "+").replace("-", "+").replace("_", "/")
    cleaned += "=" * (-len(cleaned) % 4)

    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(token, f"invalid base64: {e}") from e


def decode(token: str) -> str:
    """
    Decode a token produced by ``encode`` (or by a browser client).

    Raises:
        DecodeError: If the envelope or the percent-encoded payload is malformed
    """
    payload = _b64decode(token)

    try:
        component = payload.decode("ascii")
        return unquote(component, errors="strict")
    except UnicodeDecodeError as e:
        raise DecodeError(token, f"invalid payload: {e.reason}") from e


def raw_decode(token: str) -> str:
    """
    Fallback transform: plain base64 payload as Latin-1 text.

    Raises:
        DecodeError: If the token is not base64 at all
    """
    return _b64decode(token).decode("latin-1")


__all__ = ["DecodeError", "encode", "decode", "raw_decode"]
