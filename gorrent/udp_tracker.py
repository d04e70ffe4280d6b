"""Announcing to UDP trackers."""

from __future__ import annotations

import secrets
import socket
import struct
from urllib.parse import urlsplit

from .http_tracker import parse_compact_peers
from .peer import DEFAULT_PORT, Peer, TrackerError

__all__ = [
    "generate_transaction_id",
    "build_connect_request",
    "parse_connect_response",
    "build_announce_request",
    "parse_announce_response",
    "connect_to_tracker",
    "announce_to_tracker",
]

CONNECT_ACTION = 0
ANNOUNCE_ACTION = 1
PROTOCOL_ID = 0x41727101980
_KEY = 0xDEADBEEF
_READ_TIMEOUT = 5.0
_MAX_DATAGRAM = 1500


def generate_transaction_id() -> int:
    """Return a random 32-bit transaction id."""
    return secrets.randbits(32)


def build_connect_request(transaction_id: int) -> bytes:
    """Return the 16-byte connect request."""
    return struct.pack(">QII", PROTOCOL_ID, CONNECT_ACTION, transaction_id)


def parse_connect_response(data: bytes, transaction_id: int) -> int:
    """Validate a connect response and return its connection id."""
    if len(data) < 16:
        raise TrackerError("failed to read connect response")
    action, response_txn, connection_id = struct.unpack(">IIQ", data[:16])
    if action != CONNECT_ACTION or response_txn != transaction_id:
        raise TrackerError("invalid connect response")
    return connection_id


def build_announce_request(
    connection_id: int,
    transaction_id: int,
    info_hash: bytes,
    peer_id: bytes,
    left: int,
    port: int = DEFAULT_PORT,
) -> bytes:
    """Return an announce request asking for as many peers as the tracker gives."""
    return (
        struct.pack(">QII", connection_id, ANNOUNCE_ACTION, transaction_id)
        + bytes(info_hash)
        + bytes(peer_id)
        + struct.pack(">QQQIIIiH", 0, left, 0, 0, 0, _KEY, -1, port)
    )


def parse_announce_response(data: bytes, transaction_id: int) -> list[Peer]:
    """Validate an announce response and return the peers it lists."""
    if len(data) < 20:
        raise TrackerError("announce response too short")
    action, response_txn = struct.unpack(">II", data[:8])
    if action != ANNOUNCE_ACTION or response_txn != transaction_id:
        raise TrackerError("invalid announce response")
    return parse_compact_peers(data[20:])


def connect_to_tracker(tracker_url: str, timeout: float = _READ_TIMEOUT) -> tuple[int, socket.socket]:
    """Open a UDP socket to the tracker and perform the connect exchange.

    Returns the connection id and the connected socket, which the caller closes.
    """
    try:
        parts = urlsplit(tracker_url)
        host, port = parts.hostname, parts.port
    except ValueError as exc:
        raise TrackerError(f"invalid tracker URL: {exc}") from exc
    if not host or port is None:
        raise TrackerError(f"missing host or port in tracker URL {tracker_url!r}")

    try:
        family, _, proto, _, address = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)[0]
    except OSError as exc:
        raise TrackerError(f"cannot resolve {host}: {exc}") from exc

    sock = socket.socket(family, socket.SOCK_DGRAM, proto)
    try:
        sock.settimeout(timeout)
        transaction_id = generate_transaction_id()
        try:
            sock.connect(address)
            sock.send(build_connect_request(transaction_id))
        except OSError as exc:
            raise TrackerError(f"sending connect request failed: {exc}") from exc
        try:
            response = sock.recv(_MAX_DATAGRAM)
        except OSError as exc:
            raise TrackerError("failed to read connect response") from exc
        connection_id = parse_connect_response(response, transaction_id)
    except BaseException:
        sock.close()
        raise
    return connection_id, sock


def announce_to_tracker(
    sock: socket.socket,
    connection_id: int,
    info_hash: bytes,
    peer_id: bytes,
    left: int,
    port: int = DEFAULT_PORT,
) -> list[Peer]:
    """Send an announce on a connected socket and return the peers in the reply."""
    transaction_id = generate_transaction_id()
    request = build_announce_request(connection_id, transaction_id, info_hash, peer_id, left, port)
    if sock.gettimeout() is None:
        sock.settimeout(_READ_TIMEOUT)
    try:
        sock.send(request)
    except OSError as exc:
        raise TrackerError(f"sending announce failed: {exc}") from exc
    try:
        response = sock.recv(_MAX_DATAGRAM)
    except OSError as exc:
        raise TrackerError("announce response too short") from exc
    return parse_announce_response(response, transaction_id)