from __future__ import annotations

import pytest

from rpc_server.app.application.rpc_server import RpcServer
from rpc_server.app.infrastructure.messaging.inmemory.in_memory_channel import InMemoryChannel
from tests.fakes import FakeClock


@pytest.fixture()
def channel() -> InMemoryChannel:
    return InMemoryChannel()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def server(channel: InMemoryChannel, clock: FakeClock) -> RpcServer:
    return RpcServer(channel, clock=clock).init_server("calc")
