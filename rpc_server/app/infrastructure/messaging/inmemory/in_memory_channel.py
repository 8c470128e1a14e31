"""In-memory channel for local mode and tests.

Never blocks: a wait with nothing pending raises WaitTimeoutError straight away,
whatever timeout was requested (including an indefinite one).
"""
from __future__ import annotations

import itertools
from collections import deque
from typing import Any

from rpc_server.app.domain.models import ExchangeOptions, QueueOptions, ReplyMessage, RpcMessage
from rpc_server.app.ports.channel import ChannelClosedError, MessageCallback, WaitTimeoutError


class InMemoryChannel:
    def __init__(self) -> None:
        self.pending: deque[RpcMessage] = deque()
        self.declared: list[tuple[ExchangeOptions, QueueOptions, str]] = []
        self.acked: list[RpcMessage] = []
        self.published: list[tuple[ReplyMessage, str, str]] = []
        self.wait_timeouts: list[int | None] = []
        self.cancelled: list[str] = []
        self.closed = False
        self._consumers: dict[str, MessageCallback] = {}
        self._tags = itertools.count(1)
        self._delivery_tags = itertools.count(1)

    def deliver(self, body: bytes, **properties: Any) -> RpcMessage:
        """Queue a request; delivery_tag is assigned unless given."""
        properties.setdefault("delivery_tag", next(self._delivery_tags))
        message = RpcMessage(body=body, **properties)
        self.pending.append(message)
        return message

    async def connect(self) -> None:
        return

    async def declare_topology(
        self,
        exchange: ExchangeOptions,
        queue: QueueOptions,
        routing_key: str = "",
    ) -> None:
        self.declared.append((exchange, queue, routing_key))

    async def register_consumer(self, callback: MessageCallback) -> str:
        tag = f"ctag-{next(self._tags)}"
        self._consumers[tag] = callback
        return tag

    async def cancel_consumer(self, consumer_tag: str) -> None:
        self._consumers.pop(consumer_tag, None)
        self.cancelled.append(consumer_tag)

    @property
    def consumer_count(self) -> int:
        return len(self._consumers)

    async def wait_for_events(self, timeout_seconds: int | None) -> None:
        if self.closed:
            raise ChannelClosedError("channel is closed")
        self.wait_timeouts.append(timeout_seconds)
        if not self.pending or not self._consumers:
            raise WaitTimeoutError(f"no message within {timeout_seconds}s")
        message = self.pending.popleft()
        callback = next(iter(self._consumers.values()))
        await callback(message)

    async def ack(self, message: RpcMessage) -> None:
        self.acked.append(message)

    async def publish(self, reply: ReplyMessage, exchange: str, routing_key: str) -> None:
        self.published.append((reply, exchange, routing_key))

    async def close(self) -> None:
        self.closed = True
        self._consumers.clear()
