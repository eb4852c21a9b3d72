"""
Test Configuration
==================

Pytest fixtures and socket helpers for mjpeg-relay.
"""

import socket
import threading
import time

import pytest

from mjpeg_relay import StreamPublisher
from mjpeg_relay.server import MJpegServer
from mjpeg_relay.stream import RESPONSE_PREAMBLE, content_length


@pytest.fixture
def jpeg_bytes():
    """Provide a small JPEG-looking payload (SOI ... EOI)."""
    return b"\xff\xd8\xff\xe0" + bytes(range(32)) + b"\xff\xd9"


@pytest.fixture(params=["broadcast", "shared"])
def mode(request):
    """Run a test against both relay modes."""
    return request.param


@pytest.fixture
def running_server(mode):
    """Start a server on an ephemeral port; yield (publisher, server)."""
    publisher = StreamPublisher(mode=mode)
    server = MJpegServer(
        publisher.relay,
        ("127.0.0.1", 0),
        retry_backoff_ms=20,
        poll_interval=0.05,
    )
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    yield publisher, server

    server.shutdown()
    publisher.close()
    thread.join(timeout=5)


def connect(server, timeout=5.0):
    """Open a raw client socket to the server."""
    host, port = server.server_address[:2]
    return socket.create_connection((host, port), timeout=timeout)


def read_exactly(sock, size):
    """Read exactly size bytes or fail."""
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            raise ConnectionError(f"EOF after {len(data)} of {size} bytes")
        data += chunk
    return data


def read_part(sock):
    """Read one multipart part; return (header, body)."""
    header = b""
    while not header.endswith(b"\r\n\r\n") or header.count(b"\r\n") < 4:
        chunk = sock.recv(1)
        if not chunk:
            raise ConnectionError("EOF inside part header")
        header += chunk
    return header, read_exactly(sock, content_length(header))


def open_viewer(server):
    """Connect and consume the response preamble."""
    sock = connect(server)
    assert read_exactly(sock, len(RESPONSE_PREAMBLE)) == RESPONSE_PREAMBLE
    return sock


def wait_until(predicate, timeout=5.0, interval=0.01):
    """Poll predicate until true or timeout; return its last value."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
