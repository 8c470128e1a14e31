"""Choose the timeout for the next blocking wait.

Two independent limits bound a wait: the idle timeout (how long to block for a
single message) and the graceful max execution deadline (an absolute time after
which no new work is accepted). The nearer one wins.

The remaining seconds are returned as-is even when negative. Callers must check
``WaitDecision.deadline_exhausted`` and exit instead of waiting: a wait with zero
or fewer seconds turns into a non-blocking or unbounded wait depending on the
broker client.
"""
from __future__ import annotations

from datetime import datetime

from rpc_server.app.constants import TimeoutType
from rpc_server.app.domain.models import WaitDecision


def remaining_seconds(now: datetime, deadline: datetime) -> int:
    """Whole seconds from ``now`` until ``deadline``, truncated toward zero."""
    return int((deadline - now).total_seconds())


def choose_wait_timeout(
    now: datetime,
    graceful_deadline: datetime | None,
    idle_timeout_seconds: int | None,
) -> WaitDecision:
    if graceful_deadline is None:
        return WaitDecision(kind=TimeoutType.IDLE, seconds=idle_timeout_seconds)

    allowed = remaining_seconds(now, graceful_deadline)

    if idle_timeout_seconds and idle_timeout_seconds < allowed:
        return WaitDecision(kind=TimeoutType.IDLE, seconds=idle_timeout_seconds)

    return WaitDecision(kind=TimeoutType.GRACEFUL, seconds=allowed)
