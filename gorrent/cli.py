"""Command-line entry point: read a .torrent file and download its contents."""

from __future__ import annotations

import argparse
import secrets
from typing import Sequence

from .bencode import BencodeError
from .peer import TrackerError
from .peers import connect_to_peers, start_torrenting
from .torrent import TorrentError, print_decoded_data, read_torrent
from .tracker import get_peers

__all__ = ["generate_peer_id", "main"]

PEER_ID_PREFIX = b"-GT0010-"
CONNECT_TIMEOUT = 5.0
MAX_CONCURRENT_CONNECTIONS = 100
EXIT_FAILURE = 1


def generate_peer_id() -> bytes:
    """Return a 20-byte peer id: the client prefix followed by random bytes."""
    return PEER_ID_PREFIX + secrets.token_bytes(20 - len(PEER_ID_PREFIX))


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gorrent", description="Download a torrent.")
    parser.add_argument("-t", dest="torrent_path", default="", help="path to the .torrent file")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the client and return the process exit status."""
    args = _parser().parse_args(argv)
    torrent_path = args.torrent_path
    if not torrent_path:
        print("no file path!\nusage: ./gorrent -t=<path to .torrent file>")
        return EXIT_FAILURE
    print(f"received .torrent path: {torrent_path}")

    try:
        torrent = read_torrent(torrent_path)
    except (TorrentError, BencodeError) as exc:
        print("\nERROR:\n", exc)
        return EXIT_FAILURE
    peer_id = generate_peer_id()

    print("successfully parsed the torrent metadata")
    print_decoded_data(torrent)

    try:
        peers = get_peers(torrent, peer_id)
    except TrackerError as exc:
        print(f"tracker error: {exc}")
        peers = []
    conns = connect_to_peers(peers, CONNECT_TIMEOUT, MAX_CONCURRENT_CONNECTIONS)

    start_torrenting(conns, torrent, peer_id)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())