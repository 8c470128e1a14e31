"""
RabbitMQ channel: connection lifecycle, topology, and the blocking wait primitive.

Lifecycle:
  DISCONNECTED -> CONNECTING (backoff) -> CONNECTED -> CHANNEL_OPEN ->
  TOPOLOGY_DECLARED -> CONSUMING.
  On shutdown: CLOSING -> cancel consumers, close channel/connection -> CLOSED.

Dispatch:
  aio_pika delivers into an asyncio.Queue; deliveries are only handed to the registered
  callback from wait_for_events(), so each message is fully processed inside one wait.
  With prefetch_count=1 the broker holds the next message until the current one is acked.

Failures:
  Only the initial connect is retried. A broker disconnect while running is pushed into
  the delivery queue and surfaces from wait_for_events() as ChannelClosedError.
"""
from __future__ import annotations

import asyncio
from typing import Any

import aio_pika
from aio_pika.abc import AbstractIncomingMessage
from loguru import logger

from rpc_server.app.config.settings import Settings
from rpc_server.app.constants import REPLY_EXCHANGE
from rpc_server.app.core import SERVICE_NAME
from rpc_server.app.core.backoff import exponential_backoff
from rpc_server.app.domain.models import ExchangeOptions, QueueOptions, ReplyMessage, RpcMessage
from rpc_server.app.infrastructure.messaging.rabbitmq.aio_pika_message_adapter import to_rpc_message
from rpc_server.app.infrastructure.messaging.rabbitmq.constants import ChannelState
from rpc_server.app.ports.channel import (
    ChannelClosedError,
    ChannelError,
    MessageCallback,
    WaitTimeoutError,
)


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class RabbitMQChannel:
    """Channel implementation"""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._state = ChannelState.DISCONNECTED
        self._connection: aio_pika.abc.AbstractRobustConnection | None = None
        self._channel: aio_pika.abc.AbstractChannel | None = None
        self._exchange: aio_pika.abc.AbstractExchange | None = None
        self._queue: aio_pika.abc.AbstractQueue | None = None
        self._deliveries: asyncio.Queue[AbstractIncomingMessage | ChannelError] = asyncio.Queue()
        self._unacked: dict[int, AbstractIncomingMessage] = {}
        self._consumers: dict[str, MessageCallback] = {}
        self._closing = False
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def state(self) -> ChannelState:
        return self._state

    def _set_state(self, state: ChannelState) -> None:
        self._state = state

    def _build_amqp_url(self) -> str:
        vhost = self._settings.broker_vhost
        path = "" if vhost == "/" else vhost.lstrip("/")
        return (
            f"amqp://{self._settings.broker_user}:{self._settings.broker_password}"
            f"@{self._settings.broker_host}:{self._settings.broker_port}/{path}"
        )

    def _register_close_callback(self, connection: Any) -> None:
        callbacks = getattr(connection, "close_callbacks", None)
        if callbacks is not None:
            callbacks.add(self._on_connection_closed)

    def _on_connection_closed(self, *args: Any, **kwargs: Any) -> None:
        if self._closing:
            return
        _log("broker_disconnect_detected")
        error = ChannelClosedError("broker connection closed")
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._deliveries.put_nowait, error)
        else:
            self._deliveries.put_nowait(error)

    async def connect(self) -> None:
        self._set_state(ChannelState.CONNECTING)
        _log("rmq_connecting")
        async for attempt, _delay in exponential_backoff(
            self._settings.initial_backoff_seconds,
            self._settings.max_backoff_seconds,
            self._settings.backoff_multiplier,
            self._settings.max_connection_attempts,
            event="rmq_connect_attempt",
        ):
            try:
                self._connection = await aio_pika.connect_robust(self._build_amqp_url())
                self._loop = asyncio.get_running_loop()
                self._register_close_callback(self._connection)
                break
            except Exception as e:
                logger.warning("rmq connect failed: {}", e)
                if attempt >= self._settings.max_connection_attempts:
                    _log("rmq_connect_failed", attempt=attempt)
                    self._set_state(ChannelState.DISCONNECTED)
                    raise
        self._set_state(ChannelState.CONNECTED)
        _log("rmq_connected")

        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=self._settings.prefetch_count)
        self._set_state(ChannelState.CHANNEL_OPEN)

    def _require_channel(self) -> aio_pika.abc.AbstractChannel:
        if self._channel is None:
            raise ChannelError("channel not open")
        return self._channel

    async def declare_topology(
        self,
        exchange: ExchangeOptions,
        queue: QueueOptions,
        routing_key: str = "",
    ) -> None:
        channel = self._require_channel()
        self._exchange = await channel.declare_exchange(
            exchange.name,
            aio_pika.ExchangeType(exchange.type),
            durable=exchange.durable,
            auto_delete=exchange.auto_delete,
        )
        self._queue = await channel.declare_queue(
            queue.name,
            durable=queue.durable,
            auto_delete=queue.auto_delete,
            exclusive=queue.exclusive,
            arguments=queue.arguments or None,
        )
        await self._queue.bind(self._exchange, routing_key=routing_key)
        self._set_state(ChannelState.TOPOLOGY_DECLARED)
        _log("topology_declared", exchange=exchange.name, queue=queue.name, routing_key=routing_key)

    async def _on_delivery(self, message: AbstractIncomingMessage) -> None:
        await self._deliveries.put(message)

    async def register_consumer(self, callback: MessageCallback) -> str:
        if self._queue is None:
            raise ChannelError("topology not declared")
        consumer_tag = await self._queue.consume(self._on_delivery, no_ack=False)
        self._consumers[consumer_tag] = callback
        self._set_state(ChannelState.CONSUMING)
        return consumer_tag

    async def cancel_consumer(self, consumer_tag: str) -> None:
        self._consumers.pop(consumer_tag, None)
        if self._queue is not None:
            await self._queue.cancel(consumer_tag)

    @property
    def consumer_count(self) -> int:
        return len(self._consumers)

    async def wait_for_events(self, timeout_seconds: int | None) -> None:
        if timeout_seconds is None:
            item = await self._deliveries.get()
        else:
            try:
                item = await asyncio.wait_for(self._deliveries.get(), timeout=timeout_seconds)
            except asyncio.TimeoutError:
                raise WaitTimeoutError(f"no message within {timeout_seconds}s") from None

        if isinstance(item, ChannelError):
            raise item

        callback = next(iter(self._consumers.values()), None)
        if callback is None:
            # Buffered before the consumer was cancelled; hand it back to the broker.
            await item.nack(requeue=True)
            return

        self._unacked[item.delivery_tag] = item
        await callback(to_rpc_message(item))

    async def ack(self, message: RpcMessage) -> None:
        raw = self._unacked.pop(message.delivery_tag, None) if message.delivery_tag is not None else None
        if raw is None:
            raise ChannelError(f"unknown delivery tag: {message.delivery_tag}")
        await raw.ack()

    async def publish(self, reply: ReplyMessage, exchange: str, routing_key: str) -> None:
        channel = self._require_channel()
        if exchange == REPLY_EXCHANGE:
            target = channel.default_exchange
        else:
            target = await channel.get_exchange(exchange, ensure=False)
        await target.publish(
            aio_pika.Message(
                body=reply.body,
                content_type=reply.content_type,
                correlation_id=reply.correlation_id,
            ),
            routing_key=routing_key,
        )

    async def close(self) -> None:
        self._closing = True
        self._set_state(ChannelState.CLOSING)
        _log("channel_shutdown")
        for consumer_tag in list(self._consumers):
            try:
                await self.cancel_consumer(consumer_tag)
            except Exception as e:
                logger.warning("consumer cancel failed (continuing to close channel): {}", e)
        self._queue = None
        self._exchange = None
        self._unacked.clear()
        if self._channel:
            try:
                await self._channel.close()
            except Exception as e:
                logger.warning("channel close failed (continuing to close connection): {}", e)
            self._channel = None
        if self._connection:
            try:
                await self._connection.close()
            except Exception as e:
                logger.warning("connection close failed: {}", e)
            self._connection = None
        self._set_state(ChannelState.CLOSED)
