"""Bookkeeping of pieces to download and writing finished pieces to disk."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import Any, BinaryIO, NamedTuple, Sequence

__all__ = [
    "BLOCK_SIZE",
    "PieceWork",
    "Progress",
    "PieceManager",
    "FileWriter",
    "build_piece_works",
]

BLOCK_SIZE = 16 * 1024


def _blocks_in(length: int) -> int:
    return (length + BLOCK_SIZE - 1) // BLOCK_SIZE


@dataclass(frozen=True)
class PieceWork:
    """A piece to fetch: its index, its length in bytes and its SHA-1."""

    index: int
    length: int
    hash: bytes


class Progress(NamedTuple):
    """A snapshot of download progress."""

    downloaded_blocks: int
    total_blocks: int
    completed_pieces: int
    total_pieces: int


class PieceManager:
    """Thread-safe record of which pieces are done and which are in flight."""

    def __init__(self, num_pieces: int, total_length: int, piece_length: int) -> None:
        self.num_pieces = num_pieces
        self.have = [False] * num_pieces
        self.requested = [False] * num_pieces
        last_len = total_length - piece_length * (num_pieces - 1)
        self.total_blocks = sum(
            _blocks_in(last_len if index == num_pieces - 1 else piece_length)
            for index in range(num_pieces)
        )
        self.downloaded_blocks = 0
        self.completed_pieces = 0
        self._lock = threading.Lock()

    def _check(self, index: int) -> None:
        if not 0 <= index < self.num_pieces:
            raise IndexError(f"piece index {index} out of range")

    def pick_piece(self, peer_bitfield: Sequence[bool]) -> int | None:
        """Reserve the first missing, unrequested piece the peer has; None if none."""
        with self._lock:
            for index, (have, requested) in enumerate(zip(self.have, self.requested)):
                if not have and not requested and index < len(peer_bitfield) and peer_bitfield[index]:
                    self.requested[index] = True
                    return index
        return None

    def mark_completed(self, index: int) -> None:
        """Record that a piece has been downloaded and saved."""
        self._check(index)
        with self._lock:
            if not self.have[index]:
                self.have[index] = True
                self.completed_pieces += 1
            self.requested[index] = False

    def mark_failed(self, index: int) -> None:
        """Release a reserved piece so that it can be picked again."""
        self._check(index)
        with self._lock:
            self.requested[index] = False

    def increment_downloaded_blocks(self) -> None:
        """Count one more received block."""
        with self._lock:
            self.downloaded_blocks += 1

    def progress(self) -> Progress:
        """Return the current progress counters."""
        with self._lock:
            return Progress(
                self.downloaded_blocks,
                self.total_blocks,
                self.completed_pieces,
                self.num_pieces,
            )

    def is_complete(self) -> bool:
        """Return True once every piece has been completed."""
        with self._lock:
            return self.completed_pieces == self.num_pieces


class FileWriter:
    """Writes verified pieces into the torrent's output file or files."""

    def __init__(self, torrent: Any) -> None:
        self.torrent = torrent
        self.open_files: dict[str, BinaryIO] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> FileWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _file(self, file_path: str) -> BinaryIO:
        handle = self.open_files.get(file_path)
        if handle is not None:
            return handle
        directory = os.path.dirname(file_path)
        if directory:
            try:
                os.makedirs(directory, mode=0o755, exist_ok=True)
            except OSError as exc:
                raise OSError(f"failed to create directory {directory}: {exc}") from exc
        try:
            fd = os.open(file_path, os.O_CREAT | os.O_WRONLY | getattr(os, "O_BINARY", 0), 0o644)
        except OSError as exc:
            raise OSError(f"failed to create file {file_path}: {exc}") from exc
        handle = os.fdopen(fd, "wb", buffering=0)
        self.open_files[file_path] = handle
        return handle

    @staticmethod
    def _write_at(handle: BinaryIO, data: bytes, offset: int, file_path: str) -> None:
        try:
            handle.seek(offset)
            handle.write(data)
        except OSError as exc:
            raise OSError(f"write to {file_path} failed: {exc}") from exc

    def save_piece(self, piece_index: int, data: bytes) -> None:
        """Write a piece's bytes at its place in the output."""
        torrent = self.torrent
        piece_offset = piece_index * torrent.piece_len
        with self._lock:
            if not torrent.is_multi_file:
                output_path = os.path.join(torrent.output_dir, torrent.name)
                self._write_at(self._file(output_path), data, piece_offset, output_path)
                print(
                    f"wrote piece {piece_index} ({len(data)} bytes) at offset "
                    f"{piece_offset} to {torrent.name}"
                )
                return

            piece_end = piece_offset + len(data)
            written = 0
            file_start = 0
            for entry in torrent.files:
                file_end = file_start + entry.length
                write_start = max(piece_offset, file_start)
                write_end = min(piece_end, file_end)
                if write_start < write_end:
                    relative = os.path.join(*entry.path)
                    file_path = os.path.join(torrent.output_dir, relative)
                    chunk = data[write_start - piece_offset:write_end - piece_offset]
                    file_offset = write_start - file_start
                    self._write_at(self._file(file_path), chunk, file_offset, file_path)
                    print(
                        f"wrote {len(chunk)} bytes to {relative} at offset "
                        f"{file_offset} (piece {piece_index})"
                    )
                    written += len(chunk)
                file_start = file_end
                if written >= len(data):
                    break

    def close(self) -> None:
        """Close every file opened so far."""
        with self._lock:
            for handle in self.open_files.values():
                handle.close()
            self.open_files = {}


def build_piece_works(pieces: Sequence[bytes], piece_len: int, total_len: int) -> list[PieceWork]:
    """Describe every piece; the last one takes whatever length remains."""
    last = len(pieces) - 1
    return [
        PieceWork(
            index=index,
            length=total_len - piece_len * last if index == last else piece_len,
            hash=piece_hash,
        )
        for index, piece_hash in enumerate(pieces)
    ]