"""Custom exception hierarchy for pye131."""

from __future__ import annotations


class E131Error(Exception):
    """Base exception for all pye131 errors."""


class E131ConfigError(E131Error):
    """Invalid or missing configuration."""


class E131PacketError(E131Error):
    """Datagram could not be decoded as an E1.31 data packet.

    Packets that fail decoding are protocol-recoverable: the receiver
    drops them without touching universe state.
    """

    def __init__(self, message: str, *, length: int | None = None) -> None:
        self.length = length
        super().__init__(message)


class E131StateError(E131Error):
    """A universe invariant was violated.

    Raised for programming errors such as removing a priority that is
    not tracked, or a timer expiry for a source that is not registered.
    """


class E131TimerError(E131Error):
    """Timer scheduling, reset, or cancellation failed.

    A timer/registry mismatch breaks source liveness tracking, so this is
    never handled inside the engine.
    """

    def __init__(self, message: str, *, cid: bytes | None = None) -> None:
        self.cid = cid
        super().__init__(message)


class E131TransportError(E131Error):
    """Socket-level failure (bind, multicast membership, receive error)."""


class SourceLimitError(E131Error):
    """The source registry is at its admission ceiling."""

    def __init__(self, message: str, *, cid: bytes, max_sources: int) -> None:
        self.cid = cid
        self.max_sources = max_sources
        super().__init__(message)
