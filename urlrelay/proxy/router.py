"""Interception predicate: does an inbound request belong to the proxy?"""

import logging

from starlette.requests import Request

from urlrelay.config import ProxyConfig

logger = logging.getLogger(__name__)


class Router:
    """
    Decides whether the proxy takes over an inbound request.

    A request matches when its path starts with the prefix (path style), or
    when its path is the prefix without the trailing slash and the target
    query parameter is present (query style).

    ``match`` is called for every request the host sees, so it is a pure
    predicate that never raises.
    """

    def __init__(self, config: ProxyConfig):
        self.config = config
        self._bare_prefix = config.prefix.rstrip("/")

    def match(self, request: Request) -> bool:
        try:
            path = request.url.path
            if path.startswith(self.config.prefix):
                return True
            return path == self._bare_prefix and self.config.query_param in request.query_params
        except Exception as e:
            logger.debug(f"Route match failed, treating as non-match: {e}")
            return False
