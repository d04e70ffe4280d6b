"""Peer wire protocol messages: a 4-byte length, a 1-byte id and a payload."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

__all__ = [
    "MessageId",
    "Message",
    "message_name",
    "empty_bitfield",
    "send_bitfield",
    "parse_bitfield",
    "new_request",
    "send_message",
    "read_message",
]


class MessageId(IntEnum):
    CHOKE = 0
    UNCHOKE = 1
    INTERESTED = 2
    NOT_INTERESTED = 3
    HAVE = 4
    BITFIELD = 5
    REQUEST = 6
    PIECE = 7
    CANCEL = 8
    PORT = 9


_NAMES = {
    MessageId.CHOKE: "Choke",
    MessageId.UNCHOKE: "Unchoke",
    MessageId.INTERESTED: "Interested",
    MessageId.NOT_INTERESTED: "NotInterested",
    MessageId.HAVE: "Have",
    MessageId.BITFIELD: "Bitfield",
    MessageId.REQUEST: "Request",
    MessageId.PIECE: "Piece",
    MessageId.CANCEL: "Cancel",
    MessageId.PORT: "Port",
}


@dataclass(frozen=True)
class Message:
    """A single peer wire message."""

    msg_id: int
    payload: bytes = b""

    def serialize(self) -> bytes:
        """Return the message framed with its length prefix."""
        return struct.pack(">IB", len(self.payload) + 1, self.msg_id) + bytes(self.payload)


def message_name(msg_id: int) -> str:
    """Return a readable name for a message id."""
    try:
        return _NAMES[MessageId(msg_id)]
    except ValueError:
        return f"unknown id {msg_id}"


def empty_bitfield(num_pieces: int) -> bytes:
    """Return an all-zero bitfield large enough for ``num_pieces`` pieces."""
    return bytes((num_pieces + 7) // 8)


def _write_all(conn: Any, data: bytes) -> None:
    if hasattr(conn, "sendall"):
        conn.sendall(data)
    else:
        conn.write(data)


def _read_exact(conn: Any, size: int) -> bytes:
    """Read exactly ``size`` bytes from a socket or binary stream."""
    receive = conn.recv if hasattr(conn, "recv") else conn.read
    chunks = bytearray()
    while len(chunks) < size:
        chunk = receive(size - len(chunks))
        if not chunk:
            raise EOFError("unexpected EOF" if chunks else "EOF")
        chunks += chunk
    return bytes(chunks)


def send_message(conn: Any, message: Message) -> None:
    """Write a message to a socket or binary stream."""
    _write_all(conn, message.serialize())
    print(f"--> sent message: {message_name(message.msg_id)} Payload length={len(message.payload)}")


def send_bitfield(conn: Any, bitfield: bytes) -> None:
    """Send a bitfield message."""
    send_message(conn, Message(MessageId.BITFIELD, bytes(bitfield)))


def parse_bitfield(raw: bytes, num_pieces: int) -> list[bool]:
    """Expand a bitfield into one flag per piece, high bit first."""
    bits = [False] * num_pieces
    for index in range(min(num_pieces, len(raw) * 8)):
        byte, offset = divmod(index, 8)
        bits[index] = bool((raw[byte] >> (7 - offset)) & 1)
    return bits


def new_request(index: int, offset: int, length: int) -> Message:
    """Build a request for ``length`` bytes at ``offset`` of piece ``index``."""
    return Message(MessageId.REQUEST, struct.pack(">III", index, offset, length))


def read_message(conn: Any) -> Message | None:
    """Read one message; returns None for a keep-alive."""
    (length,) = struct.unpack(">I", _read_exact(conn, 4))
    if length == 0:
        return None
    body = _read_exact(conn, length)
    return Message(body[0], body[1:])