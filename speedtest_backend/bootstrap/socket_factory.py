"""Listening socket creation."""

import socket

ACCEPT_POLL_SECONDS = 0.5


def create_server_socket(host: str, port: int) -> socket.socket:
    """Bind a listening TCP socket; raises ``OSError`` when the bind fails.

    The accept timeout lets accept loops notice a shutdown request without
    needing the socket to be closed from another thread.
    """
    family = socket.AF_INET6 if host and ":" in host else socket.AF_INET
    server_socket = socket.create_server((host, port), family=family)
    server_socket.settimeout(ACCEPT_POLL_SECONDS)
    return server_socket
