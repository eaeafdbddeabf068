"""
Proxy Main - Process entry point
Wires settings into the application and serves it until interrupted.
"""
import asyncio
import logging
import signal
import sys

import uvicorn

from config import ProxyConfig, ProxySettings
from server import create_app

logger = logging.getLogger(__name__)


def configure_logging(level: str = ProxyConfig.LOG_LEVEL):
    logging.basicConfig(level=level.upper(), format=ProxyConfig.LOG_FORMAT)


def build_server(settings: ProxySettings) -> uvicorn.Server:
    config = uvicorn.Config(
        create_app(settings),
        host=settings.bind_address,
        port=settings.bind_port,
        log_level=settings.log_level.lower(),
        access_log=False,
    )
    return uvicorn.Server(config)


async def serve(settings: ProxySettings) -> int:
    """
    Serve until SIGINT/SIGTERM. uvicorn stops accepting connections and
    closes existing ones before this returns.
    """
    server = build_server(settings)
    logger.info(f"Started proxy server on {settings.bind_address}:{settings.bind_port}")

    try:
        await server.serve()
    except Exception as e:
        logger.error(f"Server failed: {e}")
        return 1

    if server.started:
        logger.info("Shut down gracefully")
        return 0

    logger.error("Server did not start")
    return 1


def run() -> int:
    settings = ProxyConfig.from_env()
    configure_logging(settings.log_level)

    # uvicorn re-raises the signal it stopped on once connections are closed
    signal.signal(signal.SIGTERM, signal.default_int_handler)
    try:
        return asyncio.run(serve(settings))
    except KeyboardInterrupt:
        logger.info("Shut down gracefully")
        return 0


if __name__ == "__main__":
    sys.exit(run())
