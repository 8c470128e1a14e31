"""Server-level constants shared across modules."""
from __future__ import annotations

from enum import Enum


class TimeoutType(str, Enum):
    GRACEFUL = "graceful-max-execution"
    IDLE = "idle"


REPLY_CONTENT_TYPE = "text/plain"
ERROR_REPLY_PREFIX = "error: "
# Replies go through the default exchange, routed by the request's reply_to.
REPLY_EXCHANGE = ""
QUEUE_NAME_SUFFIX = "-queue"
