"""Adapter: convert aio_pika deliveries into domain RpcMessage values."""
from __future__ import annotations

from aio_pika.abc import AbstractIncomingMessage

from rpc_server.app.domain.models import RpcMessage


def to_rpc_message(message: AbstractIncomingMessage) -> RpcMessage:
    return RpcMessage(
        body=message.body,
        reply_to=message.reply_to,
        correlation_id=message.correlation_id,
        content_type=message.content_type,
        headers=dict(message.headers or {}),
        delivery_tag=message.delivery_tag,
    )
