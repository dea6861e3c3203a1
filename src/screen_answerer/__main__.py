"""Run the relay with uvicorn: ``python -m screen_answerer``.

If the configured port is taken, the next ports are tried in turn, up to
``API_PORT_FALLBACK_ATTEMPTS`` of them.
"""

from __future__ import annotations

import argparse
import errno
import logging
import socket
import sys

import uvicorn

from screen_answerer.core.config import settings

logger = logging.getLogger("screen_answerer")


def find_available_port(host: str, start_port: int, attempts: int) -> int | None:
    """Return the first port in ``[start_port, start_port + attempts)`` that can be bound.

    Only "address in use" moves on to the next port; any other bind error
    is raised.
    """
    for port in range(start_port, min(start_port + attempts, 65536)):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, port))
            except OSError as exc:
                if exc.errno != errno.EADDRINUSE:
                    raise
                logger.warning("Port %d is already in use, trying port %d", port, port + 1)
                continue
        return port
    return None


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Screen Answerer relay server")
    parser.add_argument("--host", default=settings.api.host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.api.port, help="Preferred port")
    parser.add_argument(
        "--log-level",
        default=settings.api.log_level,
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    port = find_available_port(args.host, args.port, settings.api.port_fallback_attempts)
    if port is None:
        logger.error(
            "No free port in %d-%d",
            args.port,
            args.port + settings.api.port_fallback_attempts - 1,
        )
        return 1

    logger.info("Screen Answerer server running on port %d", port)
    uvicorn.run(
        "screen_answerer.api.server:app",
        host=args.host,
        port=port,
        log_level=args.log_level,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
