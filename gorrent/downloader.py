"""Fetching pieces from a peer block by block and saving them."""

from __future__ import annotations

import hashlib
import struct
import threading
import time
from typing import Any, Sequence

from .messages import MessageId, new_request, read_message, send_message
from .pieces import BLOCK_SIZE, FileWriter, PieceManager, PieceWork

__all__ = ["DownloadError", "download_piece", "start_downloader"]

MAX_RETRIES = 3
PIECE_TIMEOUT = 30.0
READ_TIMEOUT = 15.0
WRITE_TIMEOUT = 10.0
_BACKOFF = 1.0
_IDLE_WAIT = 1.0
_NO_BITFIELD_WAIT = 0.1


class DownloadError(Exception):
    """Raised when a piece cannot be fetched from a peer."""


class _Cancelled(DownloadError):
    """The download was cancelled or ran out of time."""


def _remote_address(conn: Any) -> str:
    try:
        address = conn.getpeername()
    except (AttributeError, OSError):
        return "<unknown>"
    if isinstance(address, tuple) and len(address) >= 2:
        host, port = address[0], address[1]
        return f"[{host}]:{port}" if ":" in str(host) else f"{host}:{port}"
    return str(address) or "<unknown>"


def _set_timeout(conn: Any, seconds: float | None) -> None:
    settimeout = getattr(conn, "settimeout", None)
    if settimeout is not None:
        settimeout(seconds)


def _check(cancel: threading.Event | None, deadline: float | None) -> None:
    if cancel is not None and cancel.is_set():
        raise _Cancelled("download cancelled")
    if deadline is not None and time.monotonic() >= deadline:
        raise _Cancelled("download timed out")


def _fetch(
    conn: Any,
    work: PieceWork,
    bitfield: Sequence[bool],
    manager: PieceManager,
    cancel: threading.Event | None,
    deadline: float | None,
) -> bytes:
    if work.index >= len(bitfield) or not bitfield[work.index]:
        raise DownloadError(f"peer doesn't have piece {work.index}")

    peer = _remote_address(conn)
    buf = bytearray(work.length)
    blocks = (work.length + BLOCK_SIZE - 1) // BLOCK_SIZE
    received = [False] * blocks
    completed = 0

    for begin in range(0, work.length, BLOCK_SIZE):
        _check(cancel, deadline)
        request = new_request(work.index, begin, min(BLOCK_SIZE, work.length - begin))
        _set_timeout(conn, WRITE_TIMEOUT)
        try:
            send_message(conn, request)
        except OSError as exc:
            raise DownloadError(f"send request failed: {exc}") from exc

    last_len = work.length % BLOCK_SIZE or BLOCK_SIZE
    while completed < blocks:
        _check(cancel, deadline)
        _set_timeout(conn, READ_TIMEOUT)
        try:
            message = read_message(conn)
        except (OSError, EOFError) as exc:
            raise DownloadError(f"read failed: {exc}") from exc

        if message is None or message.msg_id != MessageId.PIECE:
            continue
        if len(message.payload) < 8:
            raise DownloadError("short piece message")

        index, begin = struct.unpack_from(">II", message.payload)
        block = message.payload[8:]
        if index != work.index:
            continue

        block_index = begin // BLOCK_SIZE
        if block_index >= blocks or received[block_index]:
            continue

        expected = last_len if block_index == blocks - 1 else BLOCK_SIZE
        if len(block) != expected:
            print(f"Unexpected block size: got {len(block)}, expected {expected}")
            continue

        end = min(begin + len(block), work.length)
        buf[begin:end] = block[: end - begin]
        received[block_index] = True
        completed += 1
        manager.increment_downloaded_blocks()
        print(
            f"Received block {completed}/{blocks} for piece {index} "
            f"(begin={begin}, len={len(block)}) from {peer}"
        )

    if hashlib.sha1(buf).digest() != bytes(work.hash):
        raise DownloadError(f"piece hash mismatch: piece {work.index}")

    print(f"✓ Downloaded and verified piece {work.index} ({work.length} bytes) from {peer}")
    return bytes(buf)


def download_piece(
    conn: Any,
    work: PieceWork,
    bitfield: Sequence[bool],
    manager: PieceManager,
    cancel: threading.Event | None = None,
) -> bytes:
    """Request every block of a piece, collect them and verify the piece's hash.

    Raises DownloadError on any failure, including cancellation through ``cancel``.
    """
    return _fetch(conn, work, bitfield, manager, cancel, None)


def start_downloader(
    conn: Any,
    bitfield: Sequence[bool] | None,
    manager: PieceManager,
    writer: FileWriter,
    works: Sequence[PieceWork],
    cancel: threading.Event | None = None,
) -> None:
    """Download pieces from one peer until the torrent is complete or ``cancel`` is set.

    The writer is closed when this returns.
    """
    if cancel is None:
        cancel = threading.Event()
    peer = _remote_address(conn)

    with writer:
        print(f"Starting downloader for {peer}")
        while True:
            if cancel.is_set():
                print(f"Downloader context cancelled for {peer}")
                return
            if manager.is_complete():
                print(f"Download completed by {peer}")
                return
            if bitfield is None:
                cancel.wait(_NO_BITFIELD_WAIT)
                continue

            index = manager.pick_piece(bitfield)
            if index is None:
                if cancel.wait(_IDLE_WAIT):
                    return
                continue

            work = works[index]
            data: bytes | None = None
            for attempt in range(MAX_RETRIES):
                if cancel.is_set():
                    manager.mark_failed(index)
                    return
                try:
                    data = _fetch(conn, work, bitfield, manager, cancel, time.monotonic() + PIECE_TIMEOUT)
                    break
                except _Cancelled:
                    print(f"Download cancelled or timed out for piece {index} from {peer}")
                    manager.mark_failed(index)
                    return
                except DownloadError as exc:
                    print(
                        f"Failed to download piece {index} from {peer} "
                        f"(attempt {attempt + 1}/{MAX_RETRIES}): {exc}"
                    )
                    if attempt == MAX_RETRIES - 1:
                        manager.mark_failed(index)
                        break
                    if cancel.wait(_BACKOFF * (1 << attempt)):
                        manager.mark_failed(index)
                        return

            if data is None:
                continue

            try:
                writer.save_piece(work.index, data)
            except OSError as exc:
                print(f"Failed to save piece {work.index}: {exc}")
                manager.mark_failed(index)
                continue

            manager.mark_completed(index)
            print(f"✓ Completed piece {work.index} from {peer}")