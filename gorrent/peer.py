"""Shared tracker types: peers, announce requests and tracker errors."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["TrackerError", "Peer", "TrackerRequest", "DEFAULT_PORT"]

DEFAULT_PORT = 6881


class TrackerError(Exception):
    """Raised when a tracker cannot be contacted or its reply is unusable."""


@dataclass(frozen=True)
class Peer:
    """A peer address as reported by a tracker."""

    ip: str
    port: int

    def address(self) -> str:
        """Return ``host:port``, with IPv6 hosts in brackets."""
        host = f"[{self.ip}]" if ":" in self.ip else self.ip
        return f"{host}:{self.port}"


@dataclass(frozen=True)
class TrackerRequest:
    """The parameters of an announce to a tracker."""

    announce: str
    info_hash: bytes
    peer_id: bytes
    port: int = DEFAULT_PORT
    uploaded: int = 0
    downloaded: int = 0
    left: int = 0