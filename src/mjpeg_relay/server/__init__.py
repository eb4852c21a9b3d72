"""
Server Module
=============

TCP listener and per-viewer connection handling.

    - MJpegServer: Accept loop, one thread per viewer
    - ConnectionHandler: Handshake + streaming loop for one socket
"""

from mjpeg_relay.server.handler import ConnectionHandler, ConnectionMetrics
from mjpeg_relay.server.listener import MJpegServer, parse_address


__all__ = [
    "ConnectionHandler",
    "ConnectionMetrics",
    "MJpegServer",
    "parse_address",
]
