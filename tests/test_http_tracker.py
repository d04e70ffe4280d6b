import http.server
import socket
import struct
import threading
from urllib.parse import parse_qsl, urlsplit

import pytest

from gorrent.bencode import Parsed
from gorrent.http_tracker import (
    build_url,
    contact_tracker,
    get_http_peers,
    parse_compact_peers,
    parse_response,
)
from gorrent.peer import Peer, TrackerError, TrackerRequest
from gorrent.torrent import Torrent

INFO_HASH = bytes(range(20))
PEER_ID = b"-GT0010-" + bytes(range(200, 212))


def _compact(peers):
    return b"".join(socket.inet_aton(ip) + struct.pack(">H", port) for ip, port in peers)


def _bencoded_peers(compact):
    return b"d5:peers" + str(len(compact)).encode() + b":" + compact + b"e"


def _query(url):
    return dict(parse_qsl(urlsplit(url).query, encoding="latin-1"))


def _torrent(announce):
    return Torrent(
        name="sample",
        path="sample.torrent",
        info_hash=INFO_HASH,
        length=1000,
        piece_len=512,
        num_pieces=2,
        pieces=[b"\x00" * 20, b"\x01" * 20],
        announce=announce,
    )


@pytest.fixture
def http_tracker():
    state = {"status": 200, "body": b"", "paths": []}

    class Handler(http.server.BaseHTTPRequestHandler):
        def do_GET(self):
            state["paths"].append(self.path)
            self.send_response(state["status"])
            self.send_header("Content-Length", str(len(state["body"])))
            self.end_headers()
            self.wfile.write(state["body"])

        def log_message(self, *args):
            pass

    server = http.server.HTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    state["url"] = f"http://127.0.0.1:{server.server_address[1]}/announce"
    yield state
    server.shutdown()
    server.server_close()
    thread.join()


def test_build_url_keys_sorted_and_values_round_trip():
    request = TrackerRequest(
        "http://tracker.example.com/announce", INFO_HASH, PEER_ID, port=7000, left=12345
    )
    url = build_url(request)
    keys = [key for key, _ in parse_qsl(urlsplit(url).query, encoding="latin-1")]
    assert keys == sorted(keys)
    query = _query(url)
    assert query["info_hash"].encode("latin-1") == INFO_HASH
    assert query["peer_id"].encode("latin-1") == PEER_ID
    assert query["port"] == "7000"
    assert query["left"] == "12345"
    assert query["compact"] == "1"
    assert query["event"] == "started"


def test_build_url_replaces_existing_query():
    request = TrackerRequest("http://tracker.example.com/announce?old=1", INFO_HASH, PEER_ID)
    url = build_url(request)
    parts = urlsplit(url)
    assert parts.path == "/announce"
    assert parts.netloc == "tracker.example.com"
    assert "old" not in _query(url)


def test_parse_compact_peers_round_trip():
    given = [("192.168.1.20", 51413), ("8.8.4.4", 1)]
    assert parse_compact_peers(_compact(given)) == [Peer(ip, port) for ip, port in given]


def test_parse_compact_peers_ignores_trailing_partial_entry():
    data = _compact([("10.1.2.3", 6881)]) + b"\x01\x02\x03"
    assert parse_compact_peers(data) == [Peer("10.1.2.3", 6881)]


def test_parse_response_compact():
    compact = _compact([("10.0.0.9", 6889)])
    assert parse_response(Parsed({"peers": compact}, b"")) == [Peer("10.0.0.9", 6889)]


def test_parse_response_dictionary_list_skips_non_dicts():
    data = {"peers": [{"ip": b"10.0.0.2", "port": 51413}, b"junk"]}
    assert parse_response(Parsed(data, b"")) == [Peer("10.0.0.2", 51413)]


def test_parse_response_rejects_non_dictionary():
    with pytest.raises(TrackerError, match="not a dictionary"):
        parse_response(Parsed([1, 2], b""))


def test_parse_response_requires_peers():
    with pytest.raises(TrackerError, match="missing 'peers'"):
        parse_response(Parsed({"interval": 1800}, b""))


def test_parse_response_rejects_unknown_format():
    with pytest.raises(TrackerError, match="unknown 'peers' format"):
        parse_response(Parsed({"peers": 7}, b""))


def test_contact_tracker_returns_body(http_tracker):
    http_tracker["body"] = b"d8:intervali1800ee"
    request = TrackerRequest(http_tracker["url"], INFO_HASH, PEER_ID, left=10)
    assert contact_tracker(request) == b"d8:intervali1800ee"
    assert _query(http_tracker["paths"][0])["left"] == "10"


def test_contact_tracker_unreachable():
    request = TrackerRequest("http://127.0.0.1:1/announce", INFO_HASH, PEER_ID)
    with pytest.raises(TrackerError):
        contact_tracker(request)


def test_get_http_peers(http_tracker):
    given = [("10.0.0.5", 6881), ("10.0.0.6", 6882)]
    http_tracker["body"] = _bencoded_peers(_compact(given))
    peers = get_http_peers(http_tracker["url"], _torrent([http_tracker["url"]]), PEER_ID)
    assert peers == [Peer(ip, port) for ip, port in given]
    query = _query(http_tracker["paths"][0])
    assert query["info_hash"].encode("latin-1") == INFO_HASH
    assert query["left"] == "1000"


def test_get_http_peers_error_status_body_without_peers(http_tracker):
    http_tracker["status"] = 400
    http_tracker["body"] = b"d14:failure reason4:nopee"
    with pytest.raises(TrackerError, match="missing 'peers'"):
        get_http_peers(http_tracker["url"], _torrent([http_tracker["url"]]), PEER_ID)


def test_get_http_peers_invalid_bencode(http_tracker):
    http_tracker["body"] = b"not bencode"
    with pytest.raises(TrackerError):
        get_http_peers(http_tracker["url"], _torrent([http_tracker["url"]]), PEER_ID)