import socket
import struct
import threading

import pytest

from gorrent.peer import Peer, TrackerError
from gorrent.udp_tracker import (
    announce_to_tracker,
    build_announce_request,
    build_connect_request,
    connect_to_tracker,
    generate_transaction_id,
    parse_announce_response,
    parse_connect_response,
)

INFO_HASH = bytes(range(20))
PEER_ID = b"-GT0010-" + bytes(range(200, 212))
CONNECTION_ID = 0x1122334455667788


def _compact(peers):
    return b"".join(socket.inet_aton(ip) + struct.pack(">H", port) for ip, port in peers)


class _FakeUdpTracker:
    def __init__(self, peers, answer=True):
        self.peers = peers
        self.answer = answer
        self.received = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.05)
        self.url = f"udp://127.0.0.1:{self.sock.getsockname()[1]}/announce"
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        while not self._stop.is_set():
            try:
                data, addr = self.sock.recvfrom(2048)
            except socket.timeout:
                continue
            except OSError:
                return
            self.received.append(data)
            if not self.answer:
                continue
            action, txn = struct.unpack(">II", data[8:16])
            if action == 0:
                reply = struct.pack(">IIQ", 0, txn, CONNECTION_ID)
            else:
                reply = struct.pack(">IIIII", 1, txn, 1800, 0, len(self.peers)) + _compact(self.peers)
            self.sock.sendto(reply, addr)

    def stop(self):
        self._stop.set()
        self._thread.join()
        self.sock.close()


@pytest.fixture
def udp_tracker():
    server = _FakeUdpTracker([("10.0.0.7", 6881), ("10.0.0.8", 51413)])
    yield server
    server.stop()


@pytest.fixture
def silent_tracker():
    server = _FakeUdpTracker([], answer=False)
    yield server
    server.stop()


def test_transaction_ids_fit_in_32_bits():
    assert all(0 <= generate_transaction_id() < 2**32 for _ in range(50))


def test_connect_request_wire_format():
    assert build_connect_request(0x12345678) == bytes.fromhex("0000041727101980" "00000000" "12345678")


def test_connect_response_round_trip():
    data = struct.pack(">IIQ", 0, 42, CONNECTION_ID)
    assert parse_connect_response(data, 42) == CONNECTION_ID


def test_connect_response_too_short():
    with pytest.raises(TrackerError, match="failed to read connect response"):
        parse_connect_response(b"\x00" * 15, 0)


def test_connect_response_wrong_transaction():
    with pytest.raises(TrackerError, match="invalid connect response"):
        parse_connect_response(struct.pack(">IIQ", 0, 43, CONNECTION_ID), 42)


def test_connect_response_wrong_action():
    with pytest.raises(TrackerError, match="invalid connect response"):
        parse_connect_response(struct.pack(">IIQ", 1, 42, CONNECTION_ID), 42)


def test_announce_request_layout():
    request = build_announce_request(CONNECTION_ID, 77, INFO_HASH, PEER_ID, 5000, 6881)
    assert len(request) == 98
    assert struct.unpack(">QII", request[:16]) == (CONNECTION_ID, 1, 77)
    assert request[16:36] == INFO_HASH
    assert request[36:56] == PEER_ID
    downloaded, left, uploaded, event, ip, key, num_want, port = struct.unpack(">QQQIIIiH", request[56:])
    assert (downloaded, left, uploaded, event, ip) == (0, 5000, 0, 0, 0)
    assert key == 0xDEADBEEF
    assert num_want == -1
    assert port == 6881


def test_announce_response_round_trip():
    given = [("10.0.0.1", 6881), ("10.0.0.2", 6882)]
    data = struct.pack(">IIIII", 1, 9, 1800, 0, 2) + _compact(given)
    assert parse_announce_response(data, 9) == [Peer(ip, port) for ip, port in given]


def test_announce_response_too_short():
    with pytest.raises(TrackerError, match="too short"):
        parse_announce_response(struct.pack(">II", 1, 9), 9)


def test_announce_response_wrong_transaction():
    with pytest.raises(TrackerError, match="invalid announce response"):
        parse_announce_response(struct.pack(">IIIII", 1, 8, 1800, 0, 0), 9)


def test_connect_and_announce(udp_tracker):
    connection_id, sock = connect_to_tracker(udp_tracker.url, timeout=2.0)
    with sock:
        assert connection_id == CONNECTION_ID
        peers = announce_to_tracker(sock, connection_id, INFO_HASH, PEER_ID, 1000, 6881)
    assert peers == [Peer(ip, port) for ip, port in udp_tracker.peers]
    announce = udp_tracker.received[1]
    assert struct.unpack(">Q", announce[:8]) == (CONNECTION_ID,)
    assert announce[16:36] == INFO_HASH
    assert announce[36:56] == PEER_ID


def test_connect_times_out(silent_tracker):
    with pytest.raises(TrackerError, match="failed to read connect response"):
        connect_to_tracker(silent_tracker.url, timeout=0.2)


def test_connect_requires_port():
    with pytest.raises(TrackerError, match="missing host or port"):
        connect_to_tracker("udp://127.0.0.1/announce")