"""Port: broker channel used by the RPC server. Implementations live in infrastructure."""
from __future__ import annotations

from typing import Awaitable, Callable, Protocol

from rpc_server.app.domain.models import ExchangeOptions, QueueOptions, ReplyMessage, RpcMessage

MessageCallback = Callable[[RpcMessage], Awaitable[None]]


class ChannelError(Exception):
    """Base for broker channel failures."""


class WaitTimeoutError(ChannelError):
    """Raised when no event arrives within the wait window. Expected, not a failure."""


class ChannelClosedError(ChannelError):
    """Raised when the broker connection or channel goes away."""


class Channel(Protocol):
    """Transport-agnostic broker channel.

    ``wait_for_events`` is the only blocking call. Deliveries are handed to the
    registered callback from inside it, so a message is fully processed before
    the wait returns.
    """

    async def connect(self) -> None: ...

    async def declare_topology(
        self,
        exchange: ExchangeOptions,
        queue: QueueOptions,
        routing_key: str = "",
    ) -> None:
        """Declare exchange and queue and bind them. Idempotent."""
        ...

    async def register_consumer(self, callback: MessageCallback) -> str:
        """Start consuming the declared queue. Returns the consumer tag."""
        ...

    async def cancel_consumer(self, consumer_tag: str) -> None: ...

    @property
    def consumer_count(self) -> int: ...

    async def wait_for_events(self, timeout_seconds: int | None) -> None:
        """Block until one event is dispatched; raise WaitTimeoutError after ``timeout_seconds``.

        None waits indefinitely.
        """
        ...

    async def ack(self, message: RpcMessage) -> None: ...

    async def publish(self, reply: ReplyMessage, exchange: str, routing_key: str) -> None: ...

    async def close(self) -> None:
        """Release resources. No-op allowed if nothing to close."""
        ...
