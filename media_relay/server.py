"""Process entry point.

Serves the same application on two listeners, plain HTTP for the device and
HTTPS (websocket viewers included) for browsers.  Missing TLS material or a
port that is already bound is fatal: the process logs it and exits 1.
"""
from __future__ import annotations

import asyncio
import errno
import logging
import socket
import ssl
import sys

import uvicorn

from media_relay.config import Settings, get_settings
from media_relay.errors import StartupFailure
from media_relay.main import create_app

logger = logging.getLogger(__name__)


def check_tls(settings: Settings) -> None:
    """Fail early on unreadable TLS material; uvicorn loads it for serving."""
    try:
        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        context.load_cert_chain(certfile=settings.ssl_certfile, keyfile=settings.ssl_keyfile)
    except (OSError, ssl.SSLError) as exc:
        raise StartupFailure(f"Error loading SSL certificates: {exc}") from exc
    logger.info("SSL certificates loaded successfully")


def ensure_port_free(host: str, port: int) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as exc:
            if exc.errno == errno.EADDRINUSE:
                raise StartupFailure(
                    f"Port {port} is already in use. Please free up the port or use a different one."
                ) from exc
            raise StartupFailure(f"Cannot bind {host}:{port}: {exc}") from exc


async def serve(settings: Settings) -> None:
    app = create_app(settings)
    level = settings.log_level.lower()
    http_server = uvicorn.Server(
        uvicorn.Config(app, host=settings.host, port=settings.http_port, log_level=level)
    )
    https_server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=settings.host,
            port=settings.https_port,
            log_level=level,
            ssl_keyfile=settings.ssl_keyfile,
            ssl_certfile=settings.ssl_certfile,
        )
    )
    logger.info("HTTP Server listening at http://%s:%d", settings.host, settings.http_port)
    logger.info("HTTPS Server listening at https://%s:%d", settings.host, settings.https_port)
    await asyncio.gather(http_server.serve(), https_server.serve())


def main() -> int:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        check_tls(settings)
        for port in (settings.http_port, settings.https_port):
            ensure_port_free(settings.host, port)
    except StartupFailure as exc:
        logger.error("%s", exc)
        return 1

    asyncio.run(serve(settings))
    return 0


if __name__ == "__main__":
    sys.exit(main())
