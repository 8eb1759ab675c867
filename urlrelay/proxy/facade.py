"""
Proxy Facade
============

Composes Router -> Target Extractor -> Request Builder -> Response Relay into
the operations a hosting runtime needs.

Request lifecycle (one independent run per request):

    Idle -> Matched -> Extracting -> Building -> Relaying -> Completed
                          |              |           |
                          +--------------+-----------+--> Completed (error response)

``handle`` never raises: every failure becomes a response with a descriptive
plain-text body.

Configuration:
    The facade holds a single reference to a ``ProxyEngine`` built from one
    immutable ``ProxyConfig``. A reconfiguration message builds a new engine
    and swaps the reference in one assignment; a request in flight keeps the
    engine it started with, so it never observes a half-applied update.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import httpx
from fastapi import status
from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from urlrelay.config import ProxyConfig
from urlrelay.models import ConfigAck, ConfigUpdate
from urlrelay.proxy.builder import RequestBuilder
from urlrelay.proxy.errors import ProxyError
from urlrelay.proxy.extractor import TargetExtractor
from urlrelay.proxy.relay import ResponseRelay
from urlrelay.proxy.router import Router

logger = logging.getLogger(__name__)

CONFIG_UPDATE_KEYS = ("configUpdate", "__uv_config_update")


class ProxyState(str, Enum):
    IDLE = "idle"
    MATCHED = "matched"
    EXTRACTING = "extracting"
    BUILDING = "building"
    RELAYING = "relaying"
    COMPLETED = "completed"


class HostHooks(ABC):
    """
    Interface a hosting adapter drives.

    The adapter calls ``on_install`` and ``on_activate`` once during startup,
    ``route`` for every inbound request, ``handle`` only for requests ``route``
    accepted, and ``on_config_update`` for reconfiguration messages.
    """

    @abstractmethod
    def on_install(self) -> None:
        ...

    @abstractmethod
    def on_activate(self) -> None:
        ...

    @abstractmethod
    def route(self, request: Request) -> bool:
        ...

    @abstractmethod
    async def handle(self, request: Request) -> Response:
        ...

    @abstractmethod
    def on_config_update(self, message: Any) -> Dict[str, Any]:
        ...


class ProxyEngine:
    """The four proxy components wired for one immutable configuration."""

    def __init__(self, config: ProxyConfig, client: httpx.AsyncClient):
        self.config = config
        self.router = Router(config)
        self.extractor = TargetExtractor(config)
        self.builder = RequestBuilder(config)
        self.relay = ResponseRelay(config, client)


def _ack(ok: bool, error: Optional[str] = None) -> Dict[str, Any]:
    return ConfigAck(ok=ok, error=error).model_dump(exclude_none=True)


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "configUpdate"
        parts.append(f"{location}: {err.get('msg')}")
    return "; ".join(parts)


class ProxyFacade(HostHooks):
    """
    URL-rewriting proxy exposed through the host hooks interface.

    The upstream ``client`` is owned by the host adapter, which also closes it.
    """

    def __init__(self, config: ProxyConfig, client: httpx.AsyncClient):
        self._client = client
        self._engine = ProxyEngine(config, client)
        self.installed = False
        self.active = False

    @property
    def config(self) -> ProxyConfig:
        return self._engine.config

    @property
    def engine(self) -> ProxyEngine:
        return self._engine

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def on_install(self) -> None:
        self.installed = True
        logger.info("Proxy installed", extra=self.config.describe())

    def on_activate(self) -> None:
        self.active = True
        logger.info(f"Proxy active under {self.config.prefix}")

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    def route(self, request: Request) -> bool:
        return self._engine.router.match(request)

    async def handle(self, request: Request) -> Response:
        engine = self._engine
        state = ProxyState.MATCHED

        try:
            state = ProxyState.EXTRACTING
            target = engine.extractor.resolve(request)
            logger.debug(f"Resolved proxied target {target}")

            state = ProxyState.BUILDING
            outbound = await engine.builder.build(request, target)

            state = ProxyState.RELAYING
            response = await engine.relay.relay(outbound)

        except ProxyError as e:
            logger.info(
                f"Proxy request failed while {state.value}: {e.message}",
                extra={"state": state.value, "status_code": e.status_code},
            )
            response = PlainTextResponse(e.message, status_code=e.status_code)

        except Exception as e:
            logger.error(
                f"Unexpected error while {state.value}: {e}",
                exc_info=True,
                extra={"state": state.value, "path": request.url.path},
            )
            if state == ProxyState.RELAYING:
                response = PlainTextResponse(
                    f"Proxy fetch error: {e}",
                    status_code=status.HTTP_502_BAD_GATEWAY,
                )
            else:
                response = PlainTextResponse(
                    f"Failed to build remote request: {e}",
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                )

        logger.debug(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={"state": ProxyState.COMPLETED.value},
        )
        return response

    # ------------------------------------------------------------------
    # Reconfiguration
    # ------------------------------------------------------------------

    def on_config_update(self, message: Any) -> Dict[str, Any]:
        """
        Apply a ``{"configUpdate": {...}}`` message.

        Returns:
            ``{"ok": True}`` or ``{"ok": False, "error": "..."}``; never raises.
        """
        if not isinstance(message, Mapping):
            return _ack(False, "Reconfiguration message must be an object")

        payload = None
        for key in CONFIG_UPDATE_KEYS:
            if key in message:
                payload = message[key]
                break
        else:
            return _ack(False, "Message has no configUpdate field")

        if not isinstance(payload, Mapping):
            return _ack(False, "configUpdate must be an object")

        try:
            update = ConfigUpdate.model_validate(payload)
            new_config = self._engine.config.merged(update.changes())
            new_engine = ProxyEngine(new_config, self._client)
        except ValidationError as e:
            logger.warning(f"Rejected config update: {e.error_count()} error(s)")
            return _ack(False, _describe_validation_error(e))
        except (TypeError, ValueError) as e:
            logger.warning(f"Rejected config update: {e}")
            return _ack(False, str(e))

        self._engine = new_engine
        logger.info("Applied config update", extra=new_config.describe())
        return _ack(True)
