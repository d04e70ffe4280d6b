# gorrent

A small command-line BitTorrent client. It reads a `.torrent` file and asks the
torrent's trackers for peers. HTTP, HTTPS and UDP trackers are supported, and
the trackers are tried in order until one answers. The client then connects to
the peers and performs the BitTorrent handshake. It downloads pieces block by
block and checks each piece against its SHA-1 hash before writing it to disk.

## Installation

```
pip install .
```

No third-party libraries are needed at run time.

## Usage

```
gorrent -t path/to/file.torrent
```

`-t=path/to/file.torrent` works as well. The client first prints the torrent's
metadata. It then prints the peers it could reach, the messages it exchanges
with them and, every five seconds, the progress in pieces and blocks.

Downloaded data is written below `output_files/<torrent name>/` in the current
directory:

- A single-file torrent is written to `output_files/<name>/<name>`.
- A multi-file torrent keeps its directory layout inside `output_files/<name>/`.

If `-t` is missing, the command prints a usage line and exits with status 1.
It also exits with status 1 if the `.torrent` file cannot be read or parsed.
If no tracker answers, it reports the tracker error and finishes without
downloading anything.

## Using the library

The parts of the client can also be used on their own:

- `gorrent.bencode.decode_bencode(data)` decodes bencoded bytes. It returns a
  `Parsed` value that holds the decoded data and the SHA-1 hash of the raw
  `info` value. Byte strings decode to `bytes` and dictionary keys to `str`.
  Invalid input raises `BencodeError`.
- `gorrent.torrent.read_torrent(path, output_root="output_files")` loads a
  `.torrent` file into a `Torrent` and creates its output directory.
  `print_decoded_data(torrent)` prints a summary of the torrent. Malformed
  metadata raises `TorrentError`.
- `gorrent.tracker.get_peers(torrent, peer_id)` asks each tracker in turn and
  returns the first list of `Peer` values that comes back. It raises
  `TrackerError` if no tracker answers.
- Lower-level tracker helpers:
  - `gorrent.http_tracker` provides `build_url`, `parse_response`,
    `parse_compact_peers` and `get_http_peers`.
  - `gorrent.udp_tracker` provides `build_connect_request`,
    `parse_connect_response`, `build_announce_request`,
    `parse_announce_response`, `connect_to_tracker` and `announce_to_tracker`.
- `gorrent.messages` builds, sends and reads peer wire messages. It provides
  `Message`, `MessageId`, `new_request`, `parse_bitfield`, `send_message` and
  `read_message`. `read_message` returns `None` for a keep-alive.
- `gorrent.pieces` keeps track of pieces:
  - `PieceManager` records which pieces are done, which are in flight and the
    progress counters.
  - `FileWriter` writes verified pieces to their files.
  - `build_piece_works` describes each piece's index, length and hash.
- `gorrent.downloader`:
  - `download_piece` fetches and verifies one piece from a connected peer.
  - `start_downloader` keeps fetching pieces until the torrent is complete or
    it is cancelled.
- `gorrent.peers`:
  - `connect_to_peers` opens TCP connections to the peers.
  - `perform_handshake` exchanges handshakes with a peer.
  - `start_torrenting` handshakes with every connection and runs the download.
- `gorrent.cli.main(argv=None)` is the command itself.
  `generate_peer_id()` returns a 20-byte id that starts with `-GT0010-`.

```python
from gorrent.bencode import decode_bencode

parsed = decode_bencode(b"d4:infod4:name3:fooee")
print(parsed.data["info"]["name"])  # b'foo'
print(parsed.hash.hex())
```

## Limitations

- The client only downloads. It never uploads pieces to other peers and
  ignores their requests.
- It does not resume an interrupted download.
- It finds peers through the torrent's trackers only.
- Pieces are picked in order, first missing piece first.

## Running the tests

```
pip install ".[test]"
pytest
```