"""Listening sockets with optional SO_REUSEPORT."""

from __future__ import annotations

import logging
import socket

logger = logging.getLogger(__name__)


def listen(host: str, port: int, reuseport: bool = False) -> socket.socket:
    """Open a listening TCP socket, setting SO_REUSEPORT when asked and supported."""
    if reuseport and not hasattr(socket, "SO_REUSEPORT"):
        logger.warning("SO_REUSEPORT support is not implemented for your OS")
        reuseport = False

    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    return socket.create_server((host, port), family=family, reuse_port=reuseport)