"""Announcing to HTTP(S) trackers and parsing their peer lists."""

from __future__ import annotations

import http.client
import ipaddress
import urllib.error
import urllib.request
from typing import Any
from urllib.parse import quote_plus, urlencode, urlsplit, urlunsplit

from .bencode import BencodeError, Parsed, decode_bencode
from .peer import DEFAULT_PORT, Peer, TrackerError, TrackerRequest

__all__ = [
    "build_url",
    "parse_response",
    "parse_compact_peers",
    "contact_tracker",
    "get_http_peers",
]


def build_url(request: TrackerRequest) -> str:
    """Return the announce URL with the request's query, keys in sorted order."""
    try:
        parts = urlsplit(request.announce)
    except ValueError as exc:
        raise TrackerError(f"invalid tracker URL: {exc}") from exc
    params = {
        "info_hash": bytes(request.info_hash),
        "peer_id": bytes(request.peer_id),
        "port": str(request.port),
        "uploaded": str(request.uploaded),
        "downloaded": str(request.downloaded),
        "left": str(request.left),
        "compact": "1",
        "event": "started",
    }
    query = urlencode(sorted(params.items()), quote_via=quote_plus)
    return urlunsplit(parts._replace(query=query))


def parse_compact_peers(data: bytes) -> list[Peer]:
    """Split compact peer data into peers of 4-byte IPv4 and 2-byte port each."""
    return [
        Peer(
            ip=str(ipaddress.IPv4Address(data[start:start + 4])),
            port=int.from_bytes(data[start + 4:start + 6], "big"),
        )
        for start in range(0, len(data) - 5, 6)
    ]


def _dict_peer(entry: dict[str, Any]) -> Peer:
    ip = entry.get("ip")
    port = entry.get("port")
    if not isinstance(ip, bytes) or not isinstance(port, int):
        raise TrackerError("invalid peer entry in tracker response")
    return Peer(ip=ip.decode("utf-8", errors="replace"), port=port)


def parse_response(parsed: Parsed) -> list[Peer]:
    """Extract the peer list from a decoded tracker response."""
    root = parsed.data
    if not isinstance(root, dict):
        raise TrackerError("invalid tracker response: not a dictionary")
    if "peers" not in root:
        raise TrackerError("tracker response missing 'peers'")
    peers = root["peers"]
    if isinstance(peers, bytes):
        return parse_compact_peers(peers)
    if isinstance(peers, list):
        return [_dict_peer(entry) for entry in peers if isinstance(entry, dict)]
    raise TrackerError("unknown 'peers' format")


def contact_tracker(request: TrackerRequest) -> bytes:
    """Send the announce over HTTP and return the raw response body."""
    url = build_url(request)
    try:
        with urllib.request.urlopen(url) as response:
            return response.read()
    except urllib.error.HTTPError as exc:
        with exc:
            return exc.read()
    except (OSError, ValueError, http.client.HTTPException) as exc:
        raise TrackerError(f"tracker request failed: {exc}") from exc


def get_http_peers(tracker_url: str, torrent: Any, peer_id: bytes) -> list[Peer]:
    """Announce ``torrent`` to an HTTP tracker and return the peers it lists."""
    request = TrackerRequest(
        announce=tracker_url,
        info_hash=torrent.info_hash,
        peer_id=peer_id,
        port=DEFAULT_PORT,
        left=torrent.length,
    )
    try:
        body = contact_tracker(request)
        try:
            parsed = decode_bencode(body)
        except BencodeError as exc:
            raise TrackerError(f"invalid tracker response: {exc}") from exc
        return parse_response(parsed)
    except TrackerError as exc:
        print("\nERROR:\n", exc)
        raise