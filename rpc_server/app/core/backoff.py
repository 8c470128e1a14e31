"""Backoff utilities.

`exponential_backoff` yields ``(attempt, delay)`` for the caller to try an operation, logs
each attempt under the given event name, then sleeps before the next one. Used for the
initial broker connection only; failures after the server is running are not retried.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterator

from loguru import logger

from rpc_server.app.core import SERVICE_NAME


async def exponential_backoff(
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    max_attempts: int,
    *,
    event: str = "backoff_attempt",
) -> AsyncIterator[tuple[int, float]]:
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    delay = min(initial_delay, max_delay)
    for attempt in range(1, max_attempts + 1):
        logger.bind(service_name=SERVICE_NAME, event=event, attempt=attempt, delay=delay).info("")
        yield attempt, delay
        if attempt == max_attempts:
            return
        await asyncio.sleep(delay)
        delay = min(delay * multiplier, max_delay)
