"""Composition root: build and lifecycle-manage concrete dependencies.

Composition may: import concrete classes, call factories, store interface types,
manage high-level lifecycle.
"""
from __future__ import annotations

import importlib
from datetime import datetime
from typing import Callable

from loguru import logger

from rpc_server.app.application.rpc_server import RpcServer
from rpc_server.app.config.settings import Settings
from rpc_server.app.domain.serializers import resolve_serializer
from rpc_server.app.infrastructure.messaging.factory import create_channel
from rpc_server.app.ports.channel import Channel
from rpc_server.app.ports.message_handler import MessageHandler


def load_handler(path: str) -> MessageHandler:
    """Import a handler from ``"package.module:function"``."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"handler must look like 'module:function', got {path!r}")
    module = importlib.import_module(module_name)
    handler = module
    for part in attr.split("."):
        handler = getattr(handler, part)
    if not callable(handler):
        raise ValueError(f"handler {path!r} is not callable")
    return handler


class ServerDependencies:
    """Holds the wired channel and server and their lifecycle."""

    def __init__(
        self,
        *,
        settings: Settings,
        handler: MessageHandler | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._handler = handler
        self._clock = clock
        self._channel: Channel | None = None
        self._server: RpcServer | None = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def channel(self) -> Channel:
        if self._channel is None:
            raise RuntimeError("channel is not initialized")
        return self._channel

    @property
    def server(self) -> RpcServer:
        if self._server is None:
            raise RuntimeError("server is not initialized")
        return self._server

    async def connect(self) -> None:
        settings = self._settings
        handler = self._handler or load_handler(settings.handler)

        self._channel = create_channel(settings)
        await self._channel.connect()

        server = RpcServer(self._channel, clock=self._clock)
        server.init_server(settings.server_name)
        server.set_routing_key(settings.routing_key)
        server.set_callback(handler)
        server.set_serializer(resolve_serializer(settings.serializer))
        server.set_idle_timeout(settings.idle_timeout_seconds)
        server.set_graceful_max_execution_timeout_exit_code(settings.graceful_max_execution_exit_code)
        if settings.graceful_max_execution_timeout_seconds is not None:
            server.set_graceful_max_execution_datetime_from_seconds_in_the_future(
                settings.graceful_max_execution_timeout_seconds
            )
        self._server = server
        self._connected = True

    async def close(self) -> None:
        if self._channel is not None:
            try:
                await self._channel.close()
            except Exception as exc:
                logger.warning("channel close failed: {}", exc)
            self._channel = None
        self._server = None
        self._connected = False


def create_server_dependencies(
    settings: Settings | None = None,
    *,
    handler: MessageHandler | None = None,
) -> ServerDependencies:
    return ServerDependencies(settings=settings or Settings(), handler=handler)
