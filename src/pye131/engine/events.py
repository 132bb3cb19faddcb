"""Universe update events.

Every trigger handled by the universe engine (a packet or a timer
expiry) produces zero or more of these events, in order. They are plain
values: the caller drains them once per cycle and may keep or drop them
freely.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field

from pye131.models._base import Cid, E131BaseModel, format_cid


class EventKind(StrEnum):
    CHANNEL_DATA_UPDATED = "channel_data_updated"
    SOURCE_ADDED = "source_added"
    SOURCE_REMOVED = "source_removed"
    SOURCE_LIMIT_REACHED = "source_limit_reached"


class RemovalReason(StrEnum):
    TERMINATED = "terminated"
    TIMEOUT = "timeout"


class UniverseEvent(E131BaseModel):
    """A single outward-facing change to universe state."""

    kind: EventKind
    cid: Cid
    reason: RemovalReason | None = Field(default=None, description="Why the source was removed")

    @classmethod
    def channel_data_updated(cls, cid: bytes) -> UniverseEvent:
        return cls(kind=EventKind.CHANNEL_DATA_UPDATED, cid=cid)

    @classmethod
    def source_added(cls, cid: bytes) -> UniverseEvent:
        return cls(kind=EventKind.SOURCE_ADDED, cid=cid)

    @classmethod
    def source_removed(cls, cid: bytes, reason: RemovalReason) -> UniverseEvent:
        return cls(kind=EventKind.SOURCE_REMOVED, cid=cid, reason=reason)

    @classmethod
    def source_limit_reached(cls, cid: bytes) -> UniverseEvent:
        return cls(kind=EventKind.SOURCE_LIMIT_REACHED, cid=cid)

    def __str__(self) -> str:
        if self.reason is not None:
            return f"{self.kind}({format_cid(self.cid)}, {self.reason})"
        return f"{self.kind}({format_cid(self.cid)})"
