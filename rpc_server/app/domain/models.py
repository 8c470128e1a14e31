"""Domain models."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from rpc_server.app.constants import REPLY_CONTENT_TYPE, TimeoutType


@dataclass(frozen=True)
class RpcMessage:
    """Transport-agnostic request delivered by a channel adapter."""

    body: bytes
    reply_to: str | None = None
    correlation_id: str | None = None
    content_type: str | None = None
    headers: dict[str, Any] = field(default_factory=dict)
    delivery_tag: int | None = None


@dataclass(frozen=True)
class ReplyMessage:
    """Reply published back to the requester."""

    body: bytes
    correlation_id: str | None
    content_type: str = REPLY_CONTENT_TYPE


@dataclass(frozen=True)
class WaitDecision:
    """How long the next wait may block, and which deadline bounds it.

    ``seconds`` under GRACEFUL is the remaining time before the deadline and is
    zero or negative once the deadline has passed. ``seconds`` of None under IDLE
    means wait indefinitely.
    """

    kind: TimeoutType
    seconds: int | None

    @property
    def deadline_exhausted(self) -> bool:
        return self.kind is TimeoutType.GRACEFUL and self.seconds is not None and self.seconds < 1


@dataclass(frozen=True)
class ExchangeOptions:
    name: str
    type: str = "direct"
    durable: bool = True
    auto_delete: bool = False


@dataclass(frozen=True)
class QueueOptions:
    name: str
    durable: bool = True
    auto_delete: bool = False
    exclusive: bool = False
    arguments: dict[str, Any] = field(default_factory=dict)
