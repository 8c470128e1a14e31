from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable

from loguru import logger

from rpc_server.app.constants import ERROR_REPLY_PREFIX, REPLY_EXCHANGE
from rpc_server.app.core import SERVICE_NAME
from rpc_server.app.domain.models import ReplyMessage, RpcMessage
from rpc_server.app.domain.serializers import Serializer
from rpc_server.app.domain.server_state import ServerState
from rpc_server.app.ports.channel import Channel
from rpc_server.app.ports.message_handler import MessageHandler


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class MessageProcessor:
    """
    Handles one delivered request: ack, run the handler, serialize, reply, count.

    The message is acked before the handler runs, so a crash mid-handler loses the
    request rather than redelivering it (at-most-once). Handler and serializer
    failures become an "error: <message>" reply on the same correlation id; the
    caller is always answered and the message still counts as consumed.
    Broker failures (ack, publish) propagate.
    """

    def __init__(
        self,
        channel: Channel,
        state: ServerState,
        handler: MessageHandler,
        serializer: Serializer,
        *,
        after_message: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._channel = channel
        self._state = state
        self._handler = handler
        self._serializer = serializer
        self._after_message = after_message

    async def _invoke(self, message: RpcMessage) -> bytes:
        result = self._handler(message)
        if inspect.isawaitable(result):
            result = await result
        body = self._serializer(result)
        if not isinstance(body, (bytes, bytearray)):
            raise TypeError(f"serializer must return bytes, got {type(body).__name__}")
        return bytes(body)

    async def process(self, message: RpcMessage) -> None:
        await self._channel.ack(message)

        status = "ok"
        try:
            body = await self._invoke(message)
        except Exception as exc:
            status = "error"
            body = f"{ERROR_REPLY_PREFIX}{exc}".encode()

        await self.send_reply(body, message.reply_to, message.correlation_id, status=status)
        self._state.consumed += 1

        if self._after_message is not None:
            await self._after_message()

    async def send_reply(
        self,
        body: bytes,
        reply_to: str | None,
        correlation_id: str | None,
        *,
        status: str = "ok",
    ) -> None:
        if not reply_to:
            _log("reply_skipped", correlation_id=correlation_id, reason="missing_reply_to")
            return
        reply = ReplyMessage(body=body, correlation_id=correlation_id)
        await self._channel.publish(reply, REPLY_EXCHANGE, reply_to)
        _log("reply_sent", correlation_id=correlation_id, reply_to=reply_to, status=status)
