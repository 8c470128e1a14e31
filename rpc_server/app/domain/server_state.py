"""Mutable state owned by a single RpcServer run loop."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class ServerState:
    """Deadline, counters and stop flags for one server.

    Only the run loop and its message callback touch this, from the same task,
    so no locking is needed.
    """

    graceful_deadline: datetime | None = None
    graceful_exit_code: int = 0
    idle_timeout_seconds: int | None = None
    target: int = 0
    consumed: int = 0
    force_stop: bool = False
    running: bool = False

    def target_reached(self) -> bool:
        return self.target > 0 and self.consumed >= self.target

    def should_stop(self) -> bool:
        return self.force_stop or self.target_reached()
