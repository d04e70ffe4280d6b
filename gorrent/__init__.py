"""A small BitTorrent client: bencode, torrent files, HTTP and UDP trackers, peer downloads."""

__version__ = "0.1.0"