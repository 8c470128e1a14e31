"""Unit tests for the RpcServer run loop against the in-memory channel."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from rpc_server.app.application.rpc_server import RpcServer, ServerRunningError
from rpc_server.app.domain.models import ExchangeOptions, QueueOptions
from rpc_server.app.infrastructure.messaging.inmemory.in_memory_channel import InMemoryChannel
from rpc_server.app.ports.channel import ChannelClosedError
from tests.fakes import T0, FakeClock, RecordingHandler


def _deliver(channel: InMemoryChannel, *bodies: bytes) -> None:
    for i, body in enumerate(bodies):
        channel.deliver(body, reply_to="client", correlation_id=f"c{i}")


def test_init_server_names_exchange_and_queue(server):
    assert server.exchange_options == ExchangeOptions(name="calc", type="direct")
    assert server.queue_options == QueueOptions(name="calc-queue")


@pytest.mark.asyncio
async def test_run_declares_topology_and_registers_consumer(server, channel):
    server.set_callback(RecordingHandler(channel)).set_routing_key("rk")

    await server.run()

    assert channel.declared == [(ExchangeOptions(name="calc"), QueueOptions(name="calc-queue"), "rk")]
    assert channel.cancelled == ["ctag-1"]


@pytest.mark.asyncio
async def test_run_with_target_stops_after_target_messages(server, channel):
    handler = RecordingHandler(channel)
    server.set_callback(handler)
    _deliver(channel, b"a", b"b", b"c")

    exit_code = await server.run(2)

    assert exit_code == 0
    assert server.consumed == 2
    assert handler.calls == [b"a", b"b"]
    assert channel.consumer_count == 0
    assert len(channel.pending) == 1
    assert channel.wait_timeouts == [None, None]


@pytest.mark.asyncio
async def test_wait_timeout_forces_stop_and_returns_zero(server, channel):
    server.set_callback(RecordingHandler(channel)).set_idle_timeout(5)
    _deliver(channel, b"a", b"b")

    exit_code = await server.run()

    assert exit_code == 0
    assert server.consumed == 2
    assert channel.wait_timeouts == [5, 5, 5]
    assert channel.consumer_count == 0


@pytest.mark.asyncio
async def test_zero_idle_timeout_waits_indefinitely(server, channel):
    server.set_callback(RecordingHandler(channel)).set_idle_timeout(0)

    await server.run()

    assert channel.wait_timeouts == [None]


@pytest.mark.asyncio
async def test_graceful_deadline_in_past_exits_without_waiting(channel):
    clock = FakeClock.at_offsets(10)
    server = RpcServer(channel, clock=clock).init_server("calc")
    server.set_callback(RecordingHandler(channel))
    server.set_graceful_max_execution_datetime(T0)
    server.set_graceful_max_execution_timeout_exit_code(3)
    _deliver(channel, b"a")

    exit_code = await server.run()

    assert exit_code == 3
    assert channel.wait_timeouts == []
    assert server.consumed == 0
    assert server.running is False


@pytest.mark.asyncio
async def test_graceful_exit_code_defaults_to_zero(channel):
    server = RpcServer(channel, clock=FakeClock.at_offsets(60)).init_server("calc")
    server.set_callback(RecordingHandler(channel)).set_graceful_max_execution_datetime(T0)

    assert await server.run() == 0
    assert channel.wait_timeouts == []


@pytest.mark.asyncio
async def test_idle_timeout_used_when_tighter_than_deadline(server, channel):
    server.set_callback(RecordingHandler(channel)).set_idle_timeout(5)
    server.set_graceful_max_execution_datetime(T0 + timedelta(seconds=300))

    await server.run()

    assert channel.wait_timeouts == [5]


@pytest.mark.asyncio
async def test_remaining_grace_used_when_tighter_than_idle_timeout(server, channel):
    server.set_callback(RecordingHandler(channel)).set_idle_timeout(300)
    server.set_graceful_max_execution_datetime(T0 + timedelta(seconds=5))

    await server.run()

    assert channel.wait_timeouts == [5]


@pytest.mark.asyncio
async def test_deadline_reached_between_messages_finishes_current_one(channel):
    clock = FakeClock.at_offsets(0, 100)
    server = RpcServer(channel, clock=clock).init_server("calc")
    handler = RecordingHandler(channel)
    server.set_callback(handler)
    server.set_graceful_max_execution_datetime(T0 + timedelta(seconds=60))
    server.set_graceful_max_execution_timeout_exit_code(7)
    _deliver(channel, b"a", b"b")

    exit_code = await server.run()

    assert exit_code == 7
    assert handler.calls == [b"a"]
    assert channel.wait_timeouts == [60]
    assert len(channel.published) == 1
    assert len(channel.pending) == 1


@pytest.mark.asyncio
async def test_stop_from_handler_takes_effect_after_message(server, channel):
    def handler(message):
        server.stop()
        return "bye"

    server.set_callback(handler)
    _deliver(channel, b"a", b"b")

    exit_code = await server.run()

    assert exit_code == 0
    assert server.consumed == 1
    assert channel.published[0][0].body == b"bye"
    assert channel.wait_timeouts == [None]


@pytest.mark.asyncio
async def test_deadline_cannot_change_while_running(server, channel):
    def handler(message):
        server.set_graceful_max_execution_datetime_from_seconds_in_the_future(10)
        return "unreachable"

    server.set_callback(handler)
    _deliver(channel, b"a")

    await server.run()

    reply, _, _ = channel.published[0]
    assert reply.body == b"error: graceful max execution deadline cannot change while running"
    assert server.graceful_max_execution_datetime is None
    assert server.consumed == 1


@pytest.mark.asyncio
async def test_broker_failure_during_wait_propagates(server, channel):
    server.set_callback(RecordingHandler(channel))
    channel.closed = True

    with pytest.raises(ChannelClosedError):
        await server.run()

    assert server.running is False


@pytest.mark.asyncio
async def test_run_without_handler_raises(server):
    with pytest.raises(RuntimeError, match="message handler is not set"):
        await server.run()


@pytest.mark.asyncio
async def test_run_without_init_server_raises(channel):
    server = RpcServer(channel).set_callback(RecordingHandler(channel))

    with pytest.raises(RuntimeError, match="init_server"):
        await server.run()


@pytest.mark.asyncio
async def test_negative_target_rejected(server, channel):
    server.set_callback(RecordingHandler(channel))

    with pytest.raises(ValueError):
        await server.run(-1)


def test_deadline_from_seconds_in_the_future_uses_clock(server):
    server.set_graceful_max_execution_datetime_from_seconds_in_the_future(30)

    assert server.graceful_max_execution_datetime == T0 + timedelta(seconds=30)


def test_naive_deadline_is_made_timezone_aware(server):
    server.set_graceful_max_execution_datetime(datetime(2030, 1, 1, 0, 0, 0))

    assert server.graceful_max_execution_datetime.tzinfo is not None


def test_negative_idle_timeout_rejected(server):
    with pytest.raises(ValueError):
        server.set_idle_timeout(-1)


def test_setting_deadline_while_running_raises(server):
    server._state.running = True

    with pytest.raises(ServerRunningError):
        server.set_graceful_max_execution_datetime(datetime(2030, 1, 1, tzinfo=timezone.utc))


@pytest.mark.asyncio
async def test_custom_serializer_is_used(server, channel):
    server.set_callback(RecordingHandler(channel, result=42))
    server.set_serializer(lambda result: f"<{result}>".encode())
    _deliver(channel, b"a")

    await server.run(1)

    assert channel.published[0][0].body == b"<42>"


@pytest.mark.asyncio
async def test_stop_before_run_ends_run_without_waiting(server, channel):
    server.set_callback(RecordingHandler(channel))
    _deliver(channel, b"a")
    server.stop()

    exit_code = await server.run()

    assert exit_code == 0
    assert channel.wait_timeouts == []
    assert channel.cancelled == ["ctag-1"]
    assert server.consumed == 0
    assert server._state.force_stop is False


@pytest.mark.asyncio
async def test_rerun_after_graceful_exit_replaces_stale_consumer(channel):
    server = RpcServer(channel, clock=FakeClock.at_offsets(100)).init_server("calc")
    handler = RecordingHandler(channel)
    server.set_callback(handler)
    server.set_graceful_max_execution_datetime(T0 + timedelta(seconds=60))
    server.set_graceful_max_execution_timeout_exit_code(7)
    _deliver(channel, b"a")

    assert await server.run() == 7
    assert channel.consumer_count == 1

    server.set_graceful_max_execution_datetime(T0 + timedelta(seconds=300))
    exit_code = await server.run()

    assert exit_code == 0
    assert channel.cancelled == ["ctag-1", "ctag-2"]
    assert channel.consumer_count == 0
    assert channel.wait_timeouts == [200, 200]
    assert handler.calls == [b"a"]
    assert server.consumed == 1
