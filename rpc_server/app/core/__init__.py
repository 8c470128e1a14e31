"""Service-wide identifiers shared by log records."""
from __future__ import annotations

SERVICE_NAME = "rpc_server"
