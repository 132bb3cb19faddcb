"""Registered sources of a universe."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from pye131.engine.scheduler import TimerHandle
from pye131.exceptions import E131StateError, SourceLimitError
from pye131.models._base import format_cid


@dataclass(slots=True)
class SourceRecord:
    """State kept for one registered source."""

    cid: bytes
    priority: int
    last_data_seq: int
    last_sync_seq: int
    timer: TimerHandle
    name: str = ""


class SourceRegistry:
    """Mapping of CID to :class:`SourceRecord`, bounded by ``max_sources``."""

    def __init__(self, max_sources: int) -> None:
        if max_sources < 1:
            raise ValueError(f"max_sources must be at least 1, got {max_sources}")
        self._max_sources = max_sources
        self._sources: dict[bytes, SourceRecord] = {}

    @property
    def max_sources(self) -> int:
        return self._max_sources

    @property
    def is_full(self) -> bool:
        return len(self._sources) >= self._max_sources

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, cid: object) -> bool:
        return cid in self._sources

    def __iter__(self) -> Iterator[SourceRecord]:
        return iter(list(self._sources.values()))

    def get(self, cid: bytes) -> SourceRecord | None:
        return self._sources.get(cid)

    def check_capacity(self, cid: bytes) -> None:
        """Raise :class:`SourceLimitError` if *cid* could not be admitted."""
        if self.is_full:
            raise SourceLimitError(
                f"source limit of {self._max_sources} reached, {format_cid(cid)} not admitted",
                cid=cid,
                max_sources=self._max_sources,
            )

    def add(self, record: SourceRecord) -> None:
        if record.cid in self._sources:
            raise E131StateError(f"source {format_cid(record.cid)} is already registered")
        self.check_capacity(record.cid)
        self._sources[record.cid] = record

    def remove(self, cid: bytes) -> SourceRecord:
        record = self._sources.pop(cid, None)
        if record is None:
            raise E131StateError(f"source {format_cid(cid)} is not registered")
        return record
