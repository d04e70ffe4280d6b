"""Decoding of bencoded data, as used by .torrent files and tracker replies."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Any

__all__ = ["BencodeError", "Parsed", "decode_bencode"]

_INTEGER = re.compile(rb"[+-]?[0-9]+\Z")


class BencodeError(ValueError):
    """Raised when data is not valid bencode."""


@dataclass(frozen=True)
class Parsed:
    """A decoded document and the SHA-1 of the raw bytes of its ``info`` value.

    Byte strings decode to ``bytes`` values, dictionary keys to ``str``.
    """

    data: Any
    hash: bytes


def _to_int(raw: bytes, what: str) -> int:
    if not _INTEGER.match(raw):
        raise BencodeError(f"invalid {what}: {raw!r}")
    return int(raw)


class _Decoder:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0
        self.info_start = 0
        self.info_end = 0

    def _peek(self) -> int:
        return self.data[self.pos]

    def decode(self) -> Any:
        if self.pos >= len(self.data):
            raise BencodeError("unexpected end of data")
        prefix = self._peek()
        if prefix == ord("i"):
            return self.decode_int()
        if prefix == ord("l"):
            return self.decode_list()
        if prefix == ord("d"):
            return self.decode_dict()
        if ord("0") <= prefix <= ord("9"):
            return self.decode_string()
        raise BencodeError("invalid bencode prefix")

    def decode_int(self) -> int:
        self.pos += 1
        end = self.data.find(b"e", self.pos)
        if end == -1:
            self.pos = len(self.data)
            raise BencodeError("unterminated integer")
        raw = self.data[self.pos:end]
        self.pos = end + 1
        return _to_int(raw, "integer")

    def decode_string(self) -> bytes:
        colon = self.data.find(b":", self.pos)
        if colon == -1:
            self.pos = len(self.data)
            raise BencodeError("invalid string format")
        length = _to_int(self.data[self.pos:colon], "string length")
        if length < 0:
            raise BencodeError("negative string length")
        self.pos = colon + 1
        if self.pos + length > len(self.data):
            raise BencodeError("string out of range")
        value = self.data[self.pos:self.pos + length]
        self.pos += length
        return value

    def decode_list(self) -> list[Any]:
        self.pos += 1
        items: list[Any] = []
        while True:
            if self.pos >= len(self.data):
                raise BencodeError("unterminated list")
            if self._peek() == ord("e"):
                self.pos += 1
                return items
            items.append(self.decode())

    def decode_dict(self) -> dict[str, Any]:
        self.pos += 1
        result: dict[str, Any] = {}
        while True:
            if self.pos >= len(self.data):
                raise BencodeError("unterminated dict")
            if self._peek() == ord("e"):
                self.pos += 1
                return result
            key = self.decode_string().decode("utf-8", errors="surrogateescape")
            if key == "info":
                self.info_start = self.pos
                value = self.decode()
                self.info_end = self.pos
            else:
                value = self.decode()
            result[key] = value


def decode_bencode(data: bytes | bytearray | memoryview) -> Parsed:
    """Decode the first bencoded value in ``data``; trailing bytes are ignored."""
    decoder = _Decoder(bytes(data))
    value = decoder.decode()
    info_hash = hashlib.sha1(decoder.data[decoder.info_start:decoder.info_end]).digest()
    return Parsed(data=value, hash=info_hash)