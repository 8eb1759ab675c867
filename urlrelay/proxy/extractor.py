"""
Target Extractor
================

Recovers the absolute target URL embedded in a matched request.

Token lookup order:
    1. Path style: the path remainder after the prefix
    2. Query style: the target query parameter (also used when the path
       remainder is empty)

Decoding is a two-stage attempt. The configured ``decode`` runs first; if it
fails, the codec's raw fallback runs once. Failure of both is reported as an
explicit ``DecodeError`` value rather than swallowed.
"""

import logging
from typing import Optional, Union

from starlette.requests import Request

from urlrelay.config import ProxyConfig
from urlrelay.proxy import codec
from urlrelay.proxy.codec import DecodeError
from urlrelay.proxy.errors import NoTargetFound, UndecodableTarget

logger = logging.getLogger(__name__)


class TargetExtractor:
    """Finds and decodes the target token of a matched request."""

    def __init__(self, config: ProxyConfig):
        self.config = config

    def find_token(self, request: Request) -> Optional[str]:
        """Return the raw token, or None if the request carries none."""
        path = request.url.path
        query_token = request.query_params.get(self.config.query_param)

        if path.startswith(self.config.prefix):
            token = path[len(self.config.prefix):]
            return token or query_token or None

        return query_token or None

    def decode_token(self, token: str) -> Union[str, DecodeError]:
        """
        Decode a token, falling back to the raw transform once.

        Returns:
            The decoded string, or the ``DecodeError`` of the fallback stage
        """
        try:
            return self.config.decode(token)
        except Exception as e:
            # Custom decode callables may raise anything
            logger.debug(f"Primary decode failed, trying raw fallback: {e}")

        try:
            return codec.raw_decode(token)
        except DecodeError as e:
            return e

    def resolve(self, request: Request) -> str:
        """
        Return the decoded target, distinguishing why there is none.

        Raises:
            NoTargetFound: No token in path or query
            UndecodableTarget: Token present but undecodable or decodes to ""
        """
        token = self.find_token(request)
        if token is None:
            raise NoTargetFound()

        result = self.decode_token(token)
        if isinstance(result, DecodeError):
            raise UndecodableTarget(f"Proxied URL token could not be decoded: {result.reason}")
        if not result:
            raise UndecodableTarget("Proxied URL token decodes to an empty target")

        return result

    def extract(self, request: Request) -> Optional[str]:
        """Return the decoded target URL, or None when no usable target exists."""
        try:
            return self.resolve(request)
        except NoTargetFound:
            return None
