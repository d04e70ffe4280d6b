"""Talking to peers: handshakes, the message loop and running a download."""

from __future__ import annotations

import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import suppress
from typing import Any, Iterable, Sequence

from .downloader import _remote_address, _set_timeout, start_downloader
from .messages import (
    Message,
    MessageId,
    _read_exact,
    empty_bitfield,
    message_name,
    parse_bitfield,
    read_message,
    send_bitfield,
    send_message,
)
from .peer import Peer
from .pieces import FileWriter, PieceManager, build_piece_works

__all__ = [
    "HandshakeError",
    "new_handshake",
    "count_true",
    "perform_handshake",
    "handle_peer",
    "connect_to_peers",
    "start_torrenting",
]

HANDSHAKE_LEN = 68
PROTOCOL = b"BitTorrent protocol"
CONNECTION_TIMEOUT = 30.0
READ_TIMEOUT = 15.0
WRITE_TIMEOUT = 10.0
PROGRESS_INTERVAL = 5.0


class HandshakeError(Exception):
    """Raised when the handshake with a peer fails."""


def new_handshake(info_hash: bytes, peer_id: bytes) -> bytes:
    """Return the 68-byte handshake for ``info_hash`` from ``peer_id``."""
    if len(info_hash) != 20 or len(peer_id) != 20:
        raise ValueError("info hash and peer id must be 20 bytes each")
    return bytes([len(PROTOCOL)]) + PROTOCOL + bytes(8) + bytes(info_hash) + bytes(peer_id)


def count_true(bits: Iterable[bool]) -> int:
    """Return how many flags are set."""
    return sum(1 for bit in bits if bit)


def perform_handshake(conn: Any, info_hash: bytes, peer_id: bytes) -> bytes:
    """Exchange handshakes with a peer and return the peer's id."""
    message = new_handshake(info_hash, peer_id)
    _set_timeout(conn, WRITE_TIMEOUT)
    try:
        conn.sendall(message)
    except OSError as exc:
        raise HandshakeError(f"sending handshake failed: {exc}") from exc

    _set_timeout(conn, READ_TIMEOUT)
    try:
        response = _read_exact(conn, HANDSHAKE_LEN)
    except (OSError, EOFError) as exc:
        raise HandshakeError(f"reading handshake failed: {exc}") from exc

    if response[0] != len(PROTOCOL) or response[1:20] != PROTOCOL:
        raise HandshakeError("invalid protocol identifier in handshake")
    if response[28:48] != bytes(info_hash):
        raise HandshakeError("info hash mismatch in handshake")
    return response[48:68]


def handle_peer(conn: Any, manager: PieceManager, torrent: Any, stop: threading.Event | None = None) -> None:
    """Run the message loop with a peer after a successful handshake.

    Returns when ``stop`` is set or the connection fails.
    """
    if stop is None:
        stop = threading.Event()
    peer = _remote_address(conn)
    with suppress(OSError):
        send_bitfield(conn, empty_bitfield(torrent.num_pieces))

    bitfield: list[bool] | None = None
    downloading = False

    while True:
        if stop.is_set():
            print(f"Context cancelled for peer {peer}")
            return

        _set_timeout(conn, READ_TIMEOUT)
        try:
            message = read_message(conn)
        except TimeoutError:
            print(f"Read timeout from {peer}, closing connection")
            return
        except (OSError, EOFError) as exc:
            print(f"Error reading from {peer}: {exc}")
            return

        if message is None:
            print(f"Keep-alive from {peer}")
            continue

        msg_id = message.msg_id
        if msg_id == MessageId.BITFIELD:
            bitfield = parse_bitfield(message.payload, torrent.num_pieces)
            print(f"Peer {peer} has {count_true(bitfield)}/{torrent.num_pieces} pieces")
            _set_timeout(conn, WRITE_TIMEOUT)
            try:
                send_message(conn, Message(MessageId.INTERESTED))
            except OSError as exc:
                print(f"Failed to send interested to {peer}: {exc}")
                return

        elif msg_id == MessageId.UNCHOKE:
            if not downloading and bitfield is not None:
                downloading = True
                works = build_piece_works(torrent.pieces, torrent.piece_len, torrent.length)
                # The downloader reads from the same connection, so it runs in
                # this thread rather than alongside this loop.
                start_downloader(conn, bitfield, manager, FileWriter(torrent), works, stop)

        elif msg_id == MessageId.CHOKE:
            print(f"Peer {peer} choked us")
            downloading = False

        elif msg_id == MessageId.HAVE:
            if len(message.payload) < 4:
                print(f"Invalid have message from {peer}")
                continue
            index = int.from_bytes(message.payload[:4], "big")
            if bitfield is not None and index < len(bitfield):
                bitfield[index] = True
            print(f"Peer {peer} now has piece {index}")

        elif msg_id == MessageId.PIECE:
            if len(message.payload) >= 8:
                index = int.from_bytes(message.payload[0:4], "big")
                begin = int.from_bytes(message.payload[4:8], "big")
                print(
                    f"Received piece data: index={index} begin={begin} "
                    f"length={len(message.payload) - 8} from {peer}"
                )

        else:
            print(f"Peer {peer} sent message {message_name(msg_id)} ({len(message.payload)} bytes)")


def _connect(peer: Peer, timeout: float) -> socket.socket | None:
    address = peer.address()
    try:
        sock = socket.create_connection((peer.ip, peer.port), timeout=timeout)
    except OSError as exc:
        print(f"Failed to connect to {address}: {exc}")
        return None
    sock.settimeout(None)
    return sock


def connect_to_peers(peers: Sequence[Peer], timeout: float, max_concurrent: int) -> list[socket.socket]:
    """Open TCP connections to the peers, at most ``max_concurrent`` at a time."""
    if max_concurrent < 1:
        raise ValueError("max_concurrent must be at least 1")
    with ThreadPoolExecutor(max_workers=max_concurrent) as pool:
        results = list(pool.map(lambda peer: _connect(peer, timeout), peers))
    connections = [sock for sock in results if sock is not None]
    print(f"Successfully connected to {len(connections)}/{len(peers)} peers")
    return connections


def _percent(part: int, whole: int) -> float:
    return part / whole * 100 if whole else float("nan")


def _report_progress(manager: PieceManager, stop: threading.Event) -> None:
    while not stop.wait(PROGRESS_INTERVAL):
        if manager.is_complete():
            print("Download completed!")
            stop.set()
            return
        progress = manager.progress()
        print(
            f"Progress: {progress.completed_pieces}/{progress.total_pieces} pieces "
            f"({_percent(progress.completed_pieces, progress.total_pieces):.1f}%) | "
            f"{progress.downloaded_blocks}/{progress.total_blocks} blocks "
            f"({_percent(progress.downloaded_blocks, progress.total_blocks):.1f}%)"
        )


def start_torrenting(conns: Sequence[Any], torrent: Any, peer_id: bytes) -> int:
    """Handshake with every connection and download from them in parallel.

    Returns the number of successful handshakes.
    """
    manager = PieceManager(torrent.num_pieces, torrent.length, torrent.piece_len)
    stop = threading.Event()
    lock = threading.Lock()
    successful = 0

    def run_peer(conn: Any) -> None:
        nonlocal successful
        peer = _remote_address(conn)
        try:
            _set_timeout(conn, CONNECTION_TIMEOUT)
            try:
                perform_handshake(conn, torrent.info_hash, peer_id)
            except HandshakeError as exc:
                print(f"Handshake failed with {peer}: {exc}")
                return
            with lock:
                successful += 1
            print(f"Handshake successful with {peer}")
            _set_timeout(conn, None)
            handle_peer(conn, manager, torrent, stop)
        finally:
            with suppress(OSError):
                conn.close()

    reporter = threading.Thread(target=_report_progress, args=(manager, stop), daemon=True)
    reporter.start()
    workers = [threading.Thread(target=run_peer, args=(conn,), daemon=True) for conn in conns]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()
    stop.set()
    reporter.join()

    with lock:
        print(f"Finished with {successful} successful handshakes out of {len(conns)} connections")
        return successful