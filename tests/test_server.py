"""
Server Tests
============

End-to-end tests over real sockets, plus ConnectionHandler on a socketpair.
"""

import select
import socket
import threading
import time

import pytest

from mjpeg_relay.server import ConnectionHandler, MJpegServer, parse_address
from mjpeg_relay.stream import RESPONSE_PREAMBLE, BroadcastRelay, content_length, encode

from conftest import connect, open_viewer, read_exactly, read_part, wait_until


class TestParseAddress:
    """Tests for listen address parsing."""

    def test_host_port_string(self):
        assert parse_address("0.0.0.0:8088") == ("0.0.0.0", 8088)

    def test_ipv6(self):
        assert parse_address("[::1]:9000") == ("::1", 9000)

    def test_tuple(self):
        assert parse_address(("localhost", "81")) == ("localhost", 81)

    @pytest.mark.parametrize("address", ["nohost", "host:", "host:http", "[::1]9000"])
    def test_invalid(self, address):
        with pytest.raises(ValueError):
            parse_address(address)


class TestEndToEnd:
    """A real listener on an ephemeral port, both relay modes."""

    def test_preamble_then_part(self, running_server):
        publisher, server = running_server
        sock = connect(server)

        assert read_exactly(sock, len(RESPONSE_PREAMBLE)) == RESPONSE_PREAMBLE

        payload = b"0123456789"
        publisher.publish_blocking(payload)

        expected = (
            b"\r\n--MJPEGBOUNDARY\r\n"
            b"Content-Length: 10\r\n"
            b"X-Timestamp: 0.000000\r\n"
            b"\r\n" + payload
        )
        assert read_exactly(sock, len(expected)) == expected
        sock.close()

    def test_request_is_never_required(self, running_server):
        """Anything that connects gets the stream, even after sending junk."""
        _, server = running_server
        sock = connect(server)
        sock.sendall(b"GET /whatever HTTP/1.1\r\nHost: x\r\n\r\n")

        assert read_exactly(sock, len(RESPONSE_PREAMBLE)) == RESPONSE_PREAMBLE
        sock.close()

    def test_single_viewer_sees_every_frame_in_order(self, running_server, jpeg_bytes):
        publisher, server = running_server
        sock = open_viewer(server)
        payloads = [jpeg_bytes + bytes([i]) for i in range(10)]

        for payload in payloads:
            publisher.publish_blocking(payload)

        bodies = [read_part(sock)[1] for _ in payloads]
        assert bodies == payloads
        sock.close()

    def test_viewer_disconnect_is_detected(self, running_server):
        publisher, server = running_server
        sock = open_viewer(server)
        assert wait_until(lambda: server.active_connections == 1)
        sock.close()

        def gone():
            if not publisher.is_backlogged():
                publisher.publish_nonblocking(b"x" * 65536)
            return server.active_connections == 0

        assert wait_until(gone)
        assert wait_until(lambda: publisher.relay.viewer_count == 0)

    def test_closed_relay_keeps_viewer_connected(self, running_server):
        publisher, server = running_server
        sock = open_viewer(server)
        publisher.close()

        time.sleep(0.2)
        sock.settimeout(0.2)
        with pytest.raises(socket.timeout):
            sock.recv(1)
        assert server.active_connections == 1
        sock.close()

    def test_shutdown_disconnects_viewers(self, running_server):
        _, server = running_server
        sock = open_viewer(server)
        server.shutdown()

        assert sock.recv(1) == b""
        sock.close()


class TestMultipleViewers:
    """Delivery to two simultaneous viewers."""

    @pytest.fixture
    def mode(self):
        return "broadcast"

    def test_broadcast_duplicates_stream(self, running_server):
        publisher, server = running_server
        viewers = [open_viewer(server), open_viewer(server)]
        assert wait_until(lambda: publisher.relay.viewer_count == 2)
        payloads = [f"frame-{i}".encode() for i in range(5)]

        for payload in payloads:
            publisher.publish_blocking(payload)
            for sock in viewers:
                assert read_part(sock)[1] == payload

        for sock in viewers:
            sock.close()

    def test_stalled_viewer_does_not_freeze_feed(self, running_server):
        publisher, server = running_server
        host, port = server.server_address[:2]
        stalled = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        stalled.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, 4096)
        stalled.connect((host, port))
        reader = open_viewer(server)
        assert wait_until(lambda: publisher.relay.viewer_count == 2)

        frame = b"\xff\xd8" + b"\x00" * (256 * 1024) + b"\xff\xd9"
        stop = threading.Event()

        def producer():
            while not stop.is_set():
                if publisher.is_backlogged():
                    time.sleep(0.001)
                    continue
                publisher.publish_nonblocking(frame)

        thread = threading.Thread(target=producer, daemon=True)
        thread.start()
        try:
            reader.settimeout(3)
            for _ in range(50):
                assert read_part(reader)[1] == frame
        finally:
            stop.set()
            thread.join(timeout=2)
            reader.close()
            stalled.close()


class TestSharedViewers:
    """Frame stealing with the shared receiver."""

    @pytest.fixture
    def mode(self):
        return "shared"

    def test_viewers_see_disjoint_ordered_subsequences(self, running_server):
        publisher, server = running_server
        viewers = [open_viewer(server), open_viewer(server)]
        assert wait_until(lambda: server.active_connections == 2)
        payloads = [f"frame-{i:02d}".encode() for i in range(12)]

        for payload in payloads:
            publisher.publish_blocking(payload)

        buffers = {sock: b"" for sock in viewers}
        received = {sock: [] for sock in viewers}
        deadline = time.monotonic() + 5
        while sum(len(r) for r in received.values()) < len(payloads) and time.monotonic() < deadline:
            ready, _, _ = select.select(viewers, [], [], 0.1)
            for sock in ready:
                buffers[sock] += sock.recv(65536)
                buffers[sock] = _consume_parts(buffers[sock], received[sock])

        seen = [received[sock] for sock in viewers]
        for subsequence in seen:
            indices = [payloads.index(body) for body in subsequence]
            assert indices == sorted(indices)
        assert not set(seen[0]) & set(seen[1])
        assert sorted(seen[0] + seen[1]) == payloads

        for sock in viewers:
            sock.close()


def _consume_parts(buffer, sink):
    """Parse complete parts off the front of buffer; return the rest."""
    while True:
        end = buffer.find(b"\r\n\r\n", 2)
        if end < 0:
            return buffer
        header = buffer[:end + 4]
        length = content_length(header)
        if len(buffer) < len(header) + length:
            return buffer
        sink.append(buffer[len(header):len(header) + length])
        buffer = buffer[len(header) + length:]


class TestListener:
    """Bind behaviour."""

    def test_ephemeral_port(self):
        server = MJpegServer(BroadcastRelay(), ("127.0.0.1", 0))
        try:
            assert server.server_address[1] != 0
        finally:
            server.shutdown()

    def test_bind_failure_is_raised(self):
        taken = MJpegServer(BroadcastRelay(), ("127.0.0.1", 0))
        try:
            with pytest.raises(OSError):
                MJpegServer(BroadcastRelay(), taken.server_address[:2])
        finally:
            taken.shutdown()

    def test_shutdown_stops_serve_forever(self):
        server = MJpegServer(BroadcastRelay(), ("127.0.0.1", 0), poll_interval=0.05)
        thread = threading.Thread(target=server.serve_forever)
        thread.start()
        time.sleep(0.05)

        server.shutdown()
        thread.join(timeout=2)
        assert not thread.is_alive()

    def test_accept_failure_is_skipped(self):
        server = MJpegServer(BroadcastRelay(), ("127.0.0.1", 0), poll_interval=0.05)
        failing = FailingAcceptSocket(server._socket)
        server._socket = failing
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        try:
            first = connect(server)
            assert wait_until(lambda: failing.failures == 1)
            assert thread.is_alive()

            second = open_viewer(server)
            assert thread.is_alive()
            first.close()
            second.close()
        finally:
            server.shutdown()
            thread.join(timeout=2)


class FailingAcceptSocket:
    """Listening socket wrapper whose first accept() raises OSError."""

    def __init__(self, sock):
        self._sock = sock
        self.failures = 0

    def accept(self):
        if self.failures == 0:
            self.failures += 1
            raise OSError("accept failed")
        return self._sock.accept()

    def __getattr__(self, name):
        return getattr(self._sock, name)


class TestConnectionHandler:
    """ConnectionHandler driven directly over a socketpair."""

    def _start(self, relay, conn):
        stop_event = threading.Event()
        handler = ConnectionHandler(
            conn, ("test", 0), relay, stop_event,
            retry_backoff_ms=20, poll_interval=0.05,
        )
        thread = threading.Thread(target=handler.run)
        thread.start()
        return handler, stop_event, thread

    def test_streams_and_counts(self):
        relay = BroadcastRelay()
        server_end, client_end = socket.socketpair()
        client_end.settimeout(5)
        handler, stop_event, thread = self._start(relay, server_end)

        assert read_exactly(client_end, len(RESPONSE_PREAMBLE)) == RESPONSE_PREAMBLE
        relay.publish_blocking(encode(b"abc"))
        header, body = read_part(client_end)
        assert body == b"abc"

        stop_event.set()
        thread.join(timeout=2)
        assert not thread.is_alive()
        assert handler.metrics.frames_sent == 1
        assert handler.metrics.bytes_sent == len(header) + 3
        assert relay.viewer_count == 0
        client_end.close()

    def test_handshake_failure_terminates(self):
        relay = BroadcastRelay()
        server_end, client_end = socket.socketpair()
        client_end.close()
        handler, _, thread = self._start(relay, server_end)

        thread.join(timeout=2)
        assert not thread.is_alive()
        assert relay.viewer_count == 0

    def test_closed_relay_is_retried(self):
        relay = BroadcastRelay()
        relay.close()
        server_end, client_end = socket.socketpair()
        client_end.settimeout(5)
        handler, stop_event, thread = self._start(relay, server_end)

        read_exactly(client_end, len(RESPONSE_PREAMBLE))
        assert wait_until(lambda: handler.metrics.recv_errors >= 2)
        assert thread.is_alive()

        stop_event.set()
        thread.join(timeout=2)
        assert not thread.is_alive()
        client_end.close()
