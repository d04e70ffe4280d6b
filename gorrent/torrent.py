"""Reading .torrent metadata files."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .bencode import decode_bencode

__all__ = ["TorrentError", "FileInfo", "Torrent", "read_torrent", "print_decoded_data"]

DEFAULT_OUTPUT_ROOT = "output_files"


class TorrentError(Exception):
    """Raised when a .torrent file cannot be read or is malformed."""


@dataclass
class FileInfo:
    """One file of a multi-file torrent."""

    path: list[str]
    length: int


@dataclass
class Torrent:
    """Metadata of a torrent and where its data is saved."""

    name: str
    path: str
    info_hash: bytes
    length: int
    piece_len: int
    num_pieces: int
    pieces: list[bytes]
    announce: list[str]
    files: list[FileInfo] = field(default_factory=list)
    is_multi_file: bool = False
    output_dir: str = ""


def _text(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")


def _field(mapping: dict[str, Any], key: str, kind: type) -> Any:
    try:
        value = mapping[key]
    except KeyError:
        raise TorrentError(f"missing {key!r} in torrent metadata") from None
    if not isinstance(value, kind):
        raise TorrentError(f"invalid {key!r} in torrent metadata")
    return value


def _trackers(root: dict[str, Any]) -> list[str]:
    trackers: list[str] = []
    announce = root.get("announce")
    if isinstance(announce, bytes) and announce:
        trackers.append(_text(announce))
    announce_list = root.get("announce-list")
    if isinstance(announce_list, list):
        for tier in announce_list:
            if isinstance(tier, list):
                trackers.extend(_text(url) for url in tier if isinstance(url, bytes))
    return trackers


def _files(info: dict[str, Any]) -> list[FileInfo]:
    entries = _field(info, "files", list)
    files = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise TorrentError("invalid file entry in torrent metadata")
        length = _field(entry, "length", int)
        components = _field(entry, "path", list)
        if not all(isinstance(part, bytes) for part in components):
            raise TorrentError("invalid file path in torrent metadata")
        files.append(FileInfo(path=[_text(part) for part in components], length=length))
    return files


def read_torrent(path: str | os.PathLike[str], output_root: str | os.PathLike[str] = DEFAULT_OUTPUT_ROOT) -> Torrent:
    """Parse the .torrent file at ``path`` and create its output directory."""
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise TorrentError(f"failed to read the .torrent file: {exc}") from exc

    parsed = decode_bencode(data)
    root = parsed.data
    if not isinstance(root, dict):
        raise TorrentError("torrent file invalid")

    info = _field(root, "info", dict)
    pieces_raw = _field(info, "pieces", bytes)
    if len(pieces_raw) % 20:
        raise TorrentError("invalid pieces length")
    hashes = [pieces_raw[start:start + 20] for start in range(0, len(pieces_raw), 20)]

    trackers = _trackers(root)
    if not trackers:
        raise TorrentError("no tracker URL found in announce or announce-list")

    torrent = Torrent(
        name=_text(_field(info, "name", bytes)),
        path=os.fspath(path),
        info_hash=parsed.hash,
        length=0,
        piece_len=_field(info, "piece length", int),
        num_pieces=len(hashes),
        pieces=hashes,
        announce=trackers,
    )

    if "files" in info:
        torrent.is_multi_file = True
        torrent.files = _files(info)
        torrent.length = sum(entry.length for entry in torrent.files)
    else:
        torrent.length = _field(info, "length", int)

    output_dir = os.path.join(os.fspath(output_root), torrent.name)
    try:
        os.makedirs(output_dir, exist_ok=True)
    except OSError as exc:
        raise TorrentError(f"failed to create output directory: {exc}") from exc
    torrent.output_dir = output_dir
    return torrent


def print_decoded_data(torrent: Torrent) -> None:
    """Print a summary of the torrent's metadata."""
    print(f"name: {torrent.name}")
    print(f"path: {torrent.path}")
    print(f"info_hash: {torrent.info_hash.hex()}")
    print(f"length: {torrent.length}")
    print(f"piece_len: {torrent.piece_len}")
    print(f"num_pieces: {torrent.num_pieces}")
    print(f"announce: [{' '.join(torrent.announce)}]")
    print(f"multi-file: {'true' if torrent.is_multi_file else 'false'}")
    if torrent.is_multi_file:
        print(f"files ({len(torrent.files)}):")
        for number, entry in enumerate(torrent.files):
            print(f"  {number}: {os.path.join(*entry.path)} ({entry.length} bytes)")