"""Port: user-supplied request handler."""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Union

from rpc_server.app.domain.models import RpcMessage

# Handlers may be plain functions or coroutines; the processor awaits awaitable results.
MessageHandler = Callable[[RpcMessage], Union[Any, Awaitable[Any]]]
