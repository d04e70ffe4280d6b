"""Finding peers through the trackers a torrent lists."""

from __future__ import annotations

from contextlib import closing
from typing import Any
from urllib.parse import urlsplit

from .http_tracker import get_http_peers
from .peer import DEFAULT_PORT, Peer, TrackerError
from .udp_tracker import announce_to_tracker, connect_to_tracker

__all__ = ["get_peers"]


def get_peers(torrent: Any, peer_id: bytes) -> list[Peer]:
    """Ask each tracker in turn and return the peers of the first that answers."""
    for tracker_url in torrent.announce:
        try:
            scheme = urlsplit(tracker_url).scheme
        except ValueError as exc:
            print(f"invalid tracker URL: {exc}")
            continue

        if scheme in ("http", "https"):
            try:
                return get_http_peers(tracker_url, torrent, peer_id)
            except TrackerError as exc:
                print(f"HTTP tracker failed: {exc}")
        elif scheme == "udp":
            try:
                connection_id, sock = connect_to_tracker(tracker_url)
            except TrackerError as exc:
                print(f"failed UDP connect: {exc}")
                continue
            with closing(sock):
                try:
                    return announce_to_tracker(
                        sock, connection_id, torrent.info_hash, peer_id, torrent.length, DEFAULT_PORT
                    )
                except TrackerError as exc:
                    print(f"failed UDP announce: {exc}")
        else:
            print(f"unsupported tracker scheme: {scheme}")

    raise TrackerError("no valid tracker responded")