"""
RPC server: consume requests from a queue, reply to each request's reply_to.

Run loop, per iteration:
  1. stop the consumer if a stop was requested or the target message count is reached;
     once no consumer registration remains the loop ends with exit code 0;
  2. choose the wait timeout from the graceful max execution deadline and idle timeout;
  3. if the graceful deadline is exhausted, return the graceful exit code without waiting;
  4. wait for one delivery. A wait timeout only sets the force-stop flag.

Messages are processed inside the wait, one at a time. Stop requests and the graceful
deadline are only checked between messages, never during one.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from loguru import logger

from rpc_server.app.application.message_processor import MessageProcessor
from rpc_server.app.constants import QUEUE_NAME_SUFFIX
from rpc_server.app.core import SERVICE_NAME
from rpc_server.app.domain.models import ExchangeOptions, QueueOptions
from rpc_server.app.domain.serializers import DEFAULT_SERIALIZER, Serializer
from rpc_server.app.domain.server_state import ServerState
from rpc_server.app.domain.timeout_selector import choose_wait_timeout
from rpc_server.app.ports.channel import Channel, WaitTimeoutError
from rpc_server.app.ports.message_handler import MessageHandler


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServerRunningError(RuntimeError):
    """Raised when configuration that must stay fixed during a run is changed mid-run."""


class RpcServer:
    def __init__(
        self,
        channel: Channel,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._channel = channel
        self._clock = clock or _utcnow
        self._state = ServerState()
        self._callback: MessageHandler | None = None
        self._serializer: Serializer = DEFAULT_SERIALIZER
        self._exchange_options: ExchangeOptions | None = None
        self._queue_options: QueueOptions | None = None
        self._routing_key = ""
        self._consumer_tag: str | None = None

    @property
    def consumed(self) -> int:
        return self._state.consumed

    @property
    def target(self) -> int:
        return self._state.target

    @property
    def running(self) -> bool:
        return self._state.running

    @property
    def graceful_max_execution_datetime(self) -> datetime | None:
        return self._state.graceful_deadline

    @property
    def idle_timeout(self) -> int | None:
        return self._state.idle_timeout_seconds

    @property
    def exchange_options(self) -> ExchangeOptions | None:
        return self._exchange_options

    @property
    def queue_options(self) -> QueueOptions | None:
        return self._queue_options

    def init_server(self, name: str) -> "RpcServer":
        """Name the topology: exchange ``name`` (direct) and queue ``name-queue``."""
        self._exchange_options = ExchangeOptions(name=name, type="direct")
        self._queue_options = QueueOptions(name=f"{name}{QUEUE_NAME_SUFFIX}")
        return self

    def set_routing_key(self, routing_key: str) -> "RpcServer":
        self._routing_key = routing_key
        return self

    def set_callback(self, handler: MessageHandler) -> "RpcServer":
        self._callback = handler
        return self

    def set_serializer(self, serializer: Serializer) -> "RpcServer":
        self._serializer = serializer
        return self

    def set_idle_timeout(self, seconds: int | None) -> "RpcServer":
        if seconds is not None and seconds < 0:
            raise ValueError("idle timeout must be non-negative")
        self._state.idle_timeout_seconds = seconds
        return self

    def set_graceful_max_execution_datetime(self, deadline: datetime) -> "RpcServer":
        if self._state.running:
            raise ServerRunningError("graceful max execution deadline cannot change while running")
        if deadline.tzinfo is None:
            deadline = deadline.astimezone()
        self._state.graceful_deadline = deadline
        return self

    def set_graceful_max_execution_datetime_from_seconds_in_the_future(self, seconds: int) -> "RpcServer":
        return self.set_graceful_max_execution_datetime(self._clock() + timedelta(seconds=seconds))

    def set_graceful_max_execution_timeout_exit_code(self, exit_code: int) -> "RpcServer":
        self._state.graceful_exit_code = exit_code
        return self

    def stop(self) -> None:
        """Request a stop. Takes effect at the next loop iteration, never mid-message.

        A stop requested before ``run`` makes that run end before its first wait.
        """
        self._state.force_stop = True

    force_stop_consumer = stop

    async def maybe_stop_consumer(self) -> None:
        if not self._state.should_stop() or self._consumer_tag is None:
            return
        reason = "force_stop" if self._state.force_stop else "target_reached"
        _log("consumer_stopping", reason=reason, consumed=self._state.consumed)
        consumer_tag, self._consumer_tag = self._consumer_tag, None
        await self._channel.cancel_consumer(consumer_tag)

    async def _setup_consumer(self) -> None:
        if self._callback is None:
            raise RuntimeError("message handler is not set")
        if self._exchange_options is None or self._queue_options is None:
            raise RuntimeError("server is not initialized; call init_server() first")
        if self._consumer_tag is not None:
            # Left registered by a run that ended on the graceful deadline.
            stale_tag, self._consumer_tag = self._consumer_tag, None
            _log("stale_consumer_cancelled", consumer_tag=stale_tag)
            await self._channel.cancel_consumer(stale_tag)
        await self._channel.declare_topology(
            self._exchange_options,
            self._queue_options,
            self._routing_key,
        )
        processor = MessageProcessor(
            self._channel,
            self._state,
            self._callback,
            self._serializer,
            after_message=self.maybe_stop_consumer,
        )
        self._consumer_tag = await self._channel.register_consumer(processor.process)

    async def run(self, target: int = 0) -> int:
        """Consume until stopped, the target count is reached, or the graceful deadline passes.

        Returns 0 on normal termination and the graceful exit code when the deadline ends the run.
        The target is compared against the total consumed over the server's lifetime.
        """
        if target < 0:
            raise ValueError("target must be non-negative")
        self._state.target = target
        self._state.running = True
        try:
            await self._setup_consumer()
            _log(
                "rpc_server_started",
                exchange=self._exchange_options.name if self._exchange_options else None,
                target=target,
                idle_timeout=self._state.idle_timeout_seconds,
                graceful_deadline=(
                    self._state.graceful_deadline.isoformat() if self._state.graceful_deadline else None
                ),
            )

            while self._channel.consumer_count:
                await self.maybe_stop_consumer()
                if not self._channel.consumer_count:
                    break

                decision = choose_wait_timeout(
                    self._clock(),
                    self._state.graceful_deadline,
                    self._state.idle_timeout_seconds,
                )
                if decision.deadline_exhausted:
                    _log(
                        "graceful_deadline_reached",
                        consumed=self._state.consumed,
                        exit_code=self._state.graceful_exit_code,
                    )
                    return self._state.graceful_exit_code

                try:
                    # 0 under IDLE means no idle timeout configured.
                    await self._channel.wait_for_events(decision.seconds or None)
                except WaitTimeoutError:
                    _log("wait_timeout", timeout_type=decision.kind.value, seconds=decision.seconds)
                    self._state.force_stop = True

            return 0
        finally:
            self._state.running = False
            self._state.force_stop = False
            _log("rpc_server_stopped", consumed=self._state.consumed)
