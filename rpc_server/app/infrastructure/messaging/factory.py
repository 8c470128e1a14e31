"""Channel factory: selects implementation from config. Only place that imports concrete channels."""
from __future__ import annotations

from rpc_server.app.config.settings import Settings
from rpc_server.app.infrastructure.messaging.inmemory.in_memory_channel import InMemoryChannel
from rpc_server.app.infrastructure.messaging.rabbitmq.rabbitmq_channel import RabbitMQChannel
from rpc_server.app.ports.channel import Channel


def create_channel(settings: Settings) -> Channel:
    backend = settings.channel_backend.strip().lower()

    if backend == "rabbitmq":
        return RabbitMQChannel(settings)

    if backend == "inmemory":
        return InMemoryChannel()

    raise ValueError(f"Unsupported channel backend: {backend}")
