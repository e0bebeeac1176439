"""Entry point for the synchronization service."""

import asyncio
import signal
import sys
from typing import NoReturn

from tasksync.config import Settings, load_settings_with_toml
from tasksync.utils.logging import get_logger, setup_logging


async def run_server(settings: Settings) -> None:
    """Run the HTTP/WebSocket server until a shutdown signal arrives."""
    import uvicorn

    from tasksync import __version__
    from tasksync.api.http_server import create_app
    from tasksync.service import SyncService

    logger = get_logger(__name__)
    logger.info(
        "starting_tasksync",
        version=__version__,
        host=settings.host,
        port=settings.port,
        store_backend=settings.store_backend,
    )

    service = SyncService.build(settings)
    await service.start()

    app = create_app(service, manage_lifecycle=False)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=settings.host,
            port=settings.port,
            log_level="warning",
        )
    )

    # Setup graceful shutdown
    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=sig.name)
        server.should_exit = True

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        await server.serve()
    finally:
        logger.info("shutting_down_services")
        await service.stop()
        logger.info("tasksync_stopped")


def main() -> NoReturn:
    """Run the server with the same settings precedence as ``tasksync serve``."""
    settings = load_settings_with_toml()
    setup_logging(settings)
    try:
        asyncio.run(run_server(settings))
    except KeyboardInterrupt:
        pass
    sys.exit(0)


if __name__ == "__main__":
    main()
