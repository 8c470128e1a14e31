import asyncio
import signal
import sys
from typing import Any

from loguru import logger

from rpc_server.app.composition import ServerDependencies, create_server_dependencies
from rpc_server.app.core import SERVICE_NAME

_SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def _install_signal_handlers(deps: ServerDependencies) -> list[signal.Signals]:
    def request_shutdown() -> None:
        if not deps.server.running:
            return
        _log("shutdown_signal")
        deps.server.stop()

    loop = asyncio.get_running_loop()
    installed = []
    for sig in _SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, request_shutdown)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            pass
    return installed


async def run_server(deps: ServerDependencies | None = None) -> int:
    """Connect, run until the server stops, and close. Returns the server's exit code."""
    deps = deps or create_server_dependencies()
    installed: list[signal.Signals] = []
    try:
        if not deps.connected:
            await deps.connect()
        installed = _install_signal_handlers(deps)
        exit_code = await deps.server.run(deps.settings.target_messages)
        _log("rpc_server_exit", exit_code=exit_code)
        return exit_code
    finally:
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)
        await deps.close()


def main() -> None:
    try:
        exit_code = asyncio.run(run_server())
    except KeyboardInterrupt:
        _log("rpc_server_interrupted")
        exit_code = 0
    except Exception as e:
        logger.exception("rpc server failed: {}", e)
        raise
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
