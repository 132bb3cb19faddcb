"""Universe session engine.

:class:`UniverseEngine` is the only component allowed to mutate universe
state. It is driven by two kinds of trigger, both handled synchronously:

* :meth:`UniverseEngine.handle_packet` - a decoded packet arrived;
* :meth:`UniverseEngine.timer_expired` - a source's liveness timer ran out.

Each trigger appends zero or more :class:`UniverseEvent` values to a
pending list which the caller drains once per cycle with
:meth:`UniverseEngine.drain_events`.

Failures of the timer scheduler, and violated invariants, are raised to
the caller unchanged. Malformed, misaddressed and stale packets are
dropped without any state change.
"""

from __future__ import annotations

import logging

from pye131._codec import E131Codec, PacketCodec
from pye131._constants import CHANNEL_COUNT, VECTOR_ROOT_E131_DATA
from pye131.config import ReceiverConfig
from pye131.engine.events import RemovalReason, UniverseEvent
from pye131.engine.priority import PriorityTracker
from pye131.engine.registry import SourceRecord, SourceRegistry
from pye131.engine.scheduler import TimerScheduler
from pye131.exceptions import E131StateError, SourceLimitError
from pye131.models._base import format_cid
from pye131.models.packet import DataPacket

_logger = logging.getLogger(__name__)


class ChannelBuffer:
    """The universe's 512 output slots.

    The underlying ``bytearray`` is allocated once and overwritten in
    place. ``generation`` increases by one on every commit so consumers
    can tell whether anything was written since they last looked.
    """

    def __init__(self, size: int = CHANNEL_COUNT) -> None:
        self._data = bytearray(size)
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def __len__(self) -> int:
        return len(self._data)

    def __getitem__(self, index: int) -> int:
        return self._data[index]

    def write(self, values: bytes) -> None:
        """Overwrite slots from 0 with *values*; later slots keep their levels."""
        count = min(len(values), len(self._data))
        self._data[:count] = values[:count]
        self._generation += 1

    def snapshot(self) -> bytes:
        return bytes(self._data)

    def view(self) -> memoryview:
        """Read-only view of the live slots."""
        return memoryview(self._data).toreadonly()


class UniverseEngine:
    """Arbitrates the sources of a single universe.

    Usage::

        scheduler = AsyncioTimerScheduler()
        engine = UniverseEngine(config, scheduler)
        engine.handle_packet(parse_packet(datagram))
        for event in engine.drain_events():
            ...
    """

    def __init__(
        self,
        config: ReceiverConfig,
        scheduler: TimerScheduler,
        *,
        codec: PacketCodec | None = None,
    ) -> None:
        self._config = config
        self._scheduler = scheduler
        self._codec: PacketCodec = codec or E131Codec()
        self._tracker = PriorityTracker(config.default_priority)
        self._registry = SourceRegistry(config.max_sources)
        self._buffer = ChannelBuffer()
        self._pending: list[UniverseEvent] = []
        scheduler.set_expiry_handler(self.timer_expired)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def config(self) -> ReceiverConfig:
        return self._config

    @property
    def universe(self) -> int:
        return self._config.universe

    @property
    def buffer(self) -> ChannelBuffer:
        return self._buffer

    @property
    def channel_data(self) -> bytes:
        """Snapshot of the current output slots."""
        return self._buffer.snapshot()

    @property
    def tracker(self) -> PriorityTracker:
        return self._tracker

    def winning_priority(self) -> int:
        return self._tracker.winning_priority()

    def winning_sources(self) -> int:
        """Number of sources transmitting at the winning priority."""
        return self._tracker.source_count()

    def total_sources(self) -> int:
        return self._tracker.total_sources()

    def source(self, cid: bytes) -> SourceRecord | None:
        return self._registry.get(cid)

    def sources(self) -> list[SourceRecord]:
        return list(self._registry)

    def __len__(self) -> int:
        return len(self._registry)

    # ------------------------------------------------------------------
    # Event queue
    # ------------------------------------------------------------------

    def drain_events(self) -> list[UniverseEvent]:
        """Return the pending events in order and clear the queue."""
        events, self._pending = self._pending, []
        return events

    def _emit(self, event: UniverseEvent) -> None:
        self._pending.append(event)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def handle_packet(self, packet: DataPacket) -> list[UniverseEvent]:
        """Process one decoded packet.

        Returns the events this packet produced. They are also queued for
        :meth:`drain_events`.
        """
        start = len(self._pending)
        self._process(packet)
        return self._pending[start:]

    def timer_expired(self, cid: bytes) -> None:
        """Remove a source whose liveness timer ran out.

        Raises :class:`E131StateError` if *cid* is not registered, which
        means a timer outlived its source.
        """
        record = self._registry.get(cid)
        if record is None:
            raise E131StateError(f"timer expired for unregistered source {format_cid(cid)}")
        self._tracker.remove(record.priority)
        self._registry.remove(cid)
        _logger.debug("Source %s timed out on universe %d", format_cid(cid), self.universe)
        self._emit(UniverseEvent.source_removed(cid, RemovalReason.TIMEOUT))

    def close(self) -> None:
        """Cancel every source timer and forget all sources, without events."""
        for record in self._registry:
            if record.timer.active:
                self._scheduler.cancel(record.timer)
            self._tracker.remove(record.priority)
            self._registry.remove(record.cid)

    # ------------------------------------------------------------------
    # Packet processing
    # ------------------------------------------------------------------

    def _admissible(self, packet: DataPacket) -> bool:
        if not self._codec.validate(packet):
            _logger.debug("Dropping structurally invalid packet from %s", format_cid(packet.cid))
            return False
        if packet.root_vector != VECTOR_ROOT_E131_DATA:
            _logger.debug("Dropping non-data packet from %s", format_cid(packet.cid))
            return False
        universe = self._codec.universe_of(packet)
        if universe != self.universe:
            _logger.debug("Dropping packet for universe %d (listening on %d)", universe, self.universe)
            return False
        if self._codec.option_flags(packet).preview and not self._config.ignore_preview_flag:
            _logger.debug("Dropping preview packet from %s", format_cid(packet.cid))
            return False
        return True

    def _process(self, packet: DataPacket) -> None:
        if not self._admissible(packet):
            return

        cid = packet.cid
        terminated = self._codec.option_flags(packet).terminated
        record = self._registry.get(cid)

        if record is None:
            try:
                self._registry.check_capacity(cid)
            except SourceLimitError as exc:
                _logger.debug("%s", exc)
                self._emit(UniverseEvent.source_limit_reached(cid))
                return
            if terminated:
                _logger.debug("Ignoring termination from unregistered source %s", format_cid(cid))
                return
            record = self._admit(packet)
        else:
            if self._codec.is_stale(record.last_data_seq, packet):
                _logger.debug(
                    "Discarding stale packet from %s (sequence %d, last %d)",
                    format_cid(cid),
                    packet.sequence,
                    record.last_data_seq,
                )
                return
            if terminated:
                self._evict(record)
                return
            self._scheduler.reset(record.timer, self._config.data_loss_timeout)
            if packet.priority != record.priority:
                self._tracker.move(record.priority, packet.priority)
                _logger.debug(
                    "Source %s priority %d -> %d",
                    format_cid(cid),
                    record.priority,
                    packet.priority,
                )
                record.priority = packet.priority

        if packet.has_channel_data and packet.priority >= self._tracker.winning_priority():
            self._buffer.write(packet.channel_data)
            self._emit(UniverseEvent.channel_data_updated(cid))

        record.last_data_seq = packet.sequence

    def _admit(self, packet: DataPacket) -> SourceRecord:
        timer = self._scheduler.schedule(packet.cid, self._config.data_loss_timeout)
        record = SourceRecord(
            cid=packet.cid,
            priority=packet.priority,
            last_data_seq=packet.sequence,
            last_sync_seq=0,
            timer=timer,
            name=packet.source_name,
        )
        self._tracker.add(record.priority)
        self._registry.add(record)
        _logger.debug(
            "Source %s (%r) added to universe %d at priority %d",
            format_cid(record.cid),
            record.name,
            self.universe,
            record.priority,
        )
        self._emit(UniverseEvent.source_added(record.cid))
        return record

    def _evict(self, record: SourceRecord) -> None:
        self._scheduler.cancel(record.timer)
        self._tracker.remove(record.priority)
        self._registry.remove(record.cid)
        _logger.debug("Source %s terminated on universe %d", format_cid(record.cid), self.universe)
        self._emit(UniverseEvent.source_removed(record.cid, RemovalReason.TERMINATED))
