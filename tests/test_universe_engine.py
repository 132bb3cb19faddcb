from __future__ import annotations

import random

import pytest

from pye131._codec import build_data_packet
from pye131.config import ReceiverConfig
from pye131.engine.events import EventKind, RemovalReason, UniverseEvent
from pye131.engine.scheduler import ManualTimerScheduler, TimerHandle
from pye131.engine.universe import UniverseEngine
from pye131.exceptions import E131StateError, E131TimerError
from pye131.models.packet import DataPacket, PacketOptions

X = b"X" * 16
Y = b"Y" * 16
Z = b"Z" * 16

X_DATA = bytes(i % 256 for i in range(1, 513))
Y_DATA = bytes([9] * 512)


def _engine(**overrides: object) -> tuple[UniverseEngine, ManualTimerScheduler]:
    config = ReceiverConfig(**{"universe": 1, "max_sources": 2, **overrides})  # type: ignore[arg-type]
    scheduler = ManualTimerScheduler()
    return UniverseEngine(config, scheduler), scheduler


def _packet(
    cid: bytes,
    data: bytes = b"",
    *,
    priority: int = 100,
    sequence: int = 0,
    universe: int = 1,
    terminated: bool = False,
    preview: bool = False,
    start_code: int = 0x00,
) -> DataPacket:
    return build_data_packet(
        cid,
        data,
        universe=universe,
        priority=priority,
        sequence=sequence,
        options=PacketOptions(terminated=terminated, preview=preview),
        start_code=start_code,
    )


def _kinds(events: list[UniverseEvent]) -> list[EventKind]:
    return [event.kind for event in events]


def _two_sources() -> tuple[UniverseEngine, ManualTimerScheduler]:
    engine, scheduler = _engine()
    engine.handle_packet(_packet(X, X_DATA, priority=100, sequence=0))
    engine.handle_packet(_packet(Y, Y_DATA, priority=150, sequence=0))
    engine.drain_events()
    return engine, scheduler


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_first_source_is_admitted_and_commits() -> None:
    engine, scheduler = _engine()

    events = engine.handle_packet(_packet(X, X_DATA))

    assert _kinds(events) == [EventKind.SOURCE_ADDED, EventKind.CHANNEL_DATA_UPDATED]
    assert all(event.cid == X for event in events)
    assert engine.channel_data == X_DATA
    assert engine.winning_priority() == 100
    assert engine.winning_sources() == 1
    assert scheduler.is_scheduled(X)


def test_higher_priority_source_takes_over_buffer() -> None:
    engine, _scheduler = _engine()
    engine.handle_packet(_packet(X, X_DATA, priority=100))

    events = engine.handle_packet(_packet(Y, Y_DATA, priority=150))

    assert _kinds(events) == [EventKind.SOURCE_ADDED, EventKind.CHANNEL_DATA_UPDATED]
    assert engine.channel_data == Y_DATA
    assert engine.winning_priority() == 150
    assert engine.winning_sources() == 1
    assert engine.total_sources() == 2


def test_lower_priority_source_does_not_touch_buffer() -> None:
    engine, _scheduler = _two_sources()
    generation = engine.buffer.generation

    events = engine.handle_packet(_packet(X, bytes([7] * 512), priority=100, sequence=1))

    assert events == []
    assert engine.channel_data == Y_DATA
    assert engine.buffer.generation == generation
    assert engine.source(X) is not None
    assert engine.source(X).last_data_seq == 1  # type: ignore[union-attr]


def test_terminated_source_is_removed_and_priority_reverts() -> None:
    engine, scheduler = _two_sources()

    events = engine.handle_packet(_packet(Y, Y_DATA, priority=150, sequence=1, terminated=True))

    assert events == [UniverseEvent.source_removed(Y, RemovalReason.TERMINATED)]
    assert engine.winning_priority() == 100
    assert [record.cid for record in engine.sources()] == [X]
    assert not scheduler.is_scheduled(Y)
    # terminating packets never commit, even with data at the winning priority
    assert engine.channel_data == Y_DATA


def test_source_limit_reached_is_reported_without_admission() -> None:
    engine, scheduler = _two_sources()

    events = engine.handle_packet(_packet(Z, bytes([1] * 512), priority=200))

    assert events == [UniverseEvent.source_limit_reached(Z)]
    assert len(engine) == 2
    assert not scheduler.is_scheduled(Z)
    assert engine.winning_priority() == 150
    assert engine.channel_data == Y_DATA


def test_silent_source_times_out() -> None:
    engine, scheduler = _engine()
    engine.handle_packet(_packet(X, X_DATA))
    engine.drain_events()

    assert scheduler.advance(2.0) == 0
    assert scheduler.advance(0.5) == 1

    assert engine.drain_events() == [UniverseEvent.source_removed(X, RemovalReason.TIMEOUT)]
    assert len(engine) == 0
    assert engine.winning_priority() == 100
    assert engine.winning_sources() == 0
    # timer expiry never touches the buffer
    assert engine.channel_data == X_DATA


# ---------------------------------------------------------------------------
# Admission filter
# ---------------------------------------------------------------------------


def test_packet_for_other_universe_is_ignored() -> None:
    engine, scheduler = _engine(universe=3)

    assert engine.handle_packet(_packet(X, X_DATA, universe=4)) == []
    assert len(engine) == 0
    assert scheduler.pending == 0


def test_preview_packets_dropped_unless_ignored() -> None:
    engine, _scheduler = _engine()
    assert engine.handle_packet(_packet(X, X_DATA, preview=True)) == []

    engine, _scheduler = _engine(ignore_preview_flag=True)
    events = engine.handle_packet(_packet(X, X_DATA, preview=True))
    assert _kinds(events) == [EventKind.SOURCE_ADDED, EventKind.CHANNEL_DATA_UPDATED]


def test_structurally_invalid_packet_is_ignored() -> None:
    engine, _scheduler = _engine()
    packet = _packet(X, X_DATA).model_copy(update={"priority": 201})

    assert engine.handle_packet(packet) == []
    assert len(engine) == 0


def test_terminated_packet_from_unknown_source_is_invisible() -> None:
    engine, scheduler = _engine()

    assert engine.handle_packet(_packet(X, X_DATA, terminated=True)) == []
    assert len(engine) == 0
    assert scheduler.pending == 0
    assert engine.channel_data == bytes(512)


def test_limit_takes_precedence_over_termination_for_unknown_source() -> None:
    engine, _scheduler = _two_sources()

    events = engine.handle_packet(_packet(Z, terminated=True))

    assert events == [UniverseEvent.source_limit_reached(Z)]


def test_capacity_frees_up_after_removal() -> None:
    engine, _scheduler = _two_sources()
    engine.handle_packet(_packet(Z))
    engine.handle_packet(_packet(X, sequence=1, terminated=True))

    events = engine.handle_packet(_packet(Z, sequence=1))

    assert _kinds(events) == [EventKind.SOURCE_ADDED]
    assert {record.cid for record in engine.sources()} == {Y, Z}


# ---------------------------------------------------------------------------
# Sequence numbers and liveness
# ---------------------------------------------------------------------------


def test_stale_packet_has_no_effect() -> None:
    engine, scheduler = _engine()
    engine.handle_packet(_packet(X, X_DATA, sequence=5))
    engine.drain_events()
    scheduler.advance(2.0)

    events = engine.handle_packet(_packet(X, bytes([3] * 512), priority=180, sequence=5))

    assert events == []
    assert engine.channel_data == X_DATA
    assert engine.source(X).priority == 100  # type: ignore[union-attr]
    assert engine.winning_priority() == 100
    # the timer was not reset by the stale packet
    scheduler.advance(0.5)
    assert _kinds(engine.drain_events()) == [EventKind.SOURCE_REMOVED]


def test_stale_termination_is_ignored() -> None:
    engine, _scheduler = _engine()
    engine.handle_packet(_packet(X, X_DATA, sequence=10))

    assert engine.handle_packet(_packet(X, sequence=8, terminated=True)) == []
    assert engine.source(X) is not None


def test_accepted_packet_resets_timer() -> None:
    engine, scheduler = _engine()
    engine.handle_packet(_packet(X, X_DATA, sequence=0))
    scheduler.advance(2.0)
    engine.handle_packet(_packet(X, X_DATA, sequence=1))
    engine.drain_events()

    scheduler.advance(2.0)
    assert engine.drain_events() == []

    scheduler.advance(0.5)
    assert engine.drain_events() == [UniverseEvent.source_removed(X, RemovalReason.TIMEOUT)]


def test_sequence_wraps_around() -> None:
    engine, _scheduler = _engine()
    engine.handle_packet(_packet(X, X_DATA, sequence=255))

    events = engine.handle_packet(_packet(X, Y_DATA, sequence=0))

    assert _kinds(events) == [EventKind.CHANNEL_DATA_UPDATED]
    assert engine.source(X).last_data_seq == 0  # type: ignore[union-attr]


def test_terminated_source_timer_never_fires() -> None:
    engine, scheduler = _engine()
    engine.handle_packet(_packet(X, X_DATA, sequence=0))
    engine.handle_packet(_packet(X, sequence=1, terminated=True))
    engine.drain_events()

    assert scheduler.advance(10.0) == 0
    assert engine.drain_events() == []


def test_expiry_for_unregistered_source_raises() -> None:
    engine, _scheduler = _engine()

    with pytest.raises(E131StateError):
        engine.timer_expired(X)


# ---------------------------------------------------------------------------
# Arbitration and the buffer gate
# ---------------------------------------------------------------------------


def test_equal_priority_latest_packet_wins() -> None:
    engine, _scheduler = _engine()
    engine.handle_packet(_packet(X, X_DATA, sequence=0))
    engine.handle_packet(_packet(Y, Y_DATA, sequence=0))
    assert engine.channel_data == Y_DATA

    events = engine.handle_packet(_packet(X, X_DATA, sequence=1))

    assert _kinds(events) == [EventKind.CHANNEL_DATA_UPDATED]
    assert engine.channel_data == X_DATA
    assert engine.winning_sources() == 2


def test_sync_only_packets_never_touch_buffer() -> None:
    engine, _scheduler = _engine()
    engine.handle_packet(_packet(X, X_DATA, sequence=0))
    generation = engine.buffer.generation

    alternate = engine.handle_packet(_packet(X, bytes([5] * 512), sequence=1, start_code=0xDD))
    empty = engine.handle_packet(_packet(X, sequence=2).model_copy(update={"property_values": b""}))

    assert alternate == []
    # an empty property list is structurally invalid and dropped by the codec
    assert empty == []
    assert engine.channel_data == X_DATA
    assert engine.buffer.generation == generation
    assert engine.source(X).last_data_seq == 1  # type: ignore[union-attr]


def test_short_packet_overwrites_leading_slots_only() -> None:
    engine, _scheduler = _engine()
    engine.handle_packet(_packet(X, X_DATA, sequence=0))

    engine.handle_packet(_packet(X, bytes([0xFF] * 3), sequence=1))

    assert engine.channel_data[:3] == bytes([0xFF] * 3)
    assert engine.channel_data[3:] == X_DATA[3:]


def test_priority_drop_hands_buffer_to_next_level() -> None:
    engine, _scheduler = _two_sources()

    events = engine.handle_packet(_packet(Y, bytes([1] * 512), priority=90, sequence=1))

    assert events == []
    assert engine.winning_priority() == 100
    assert engine.source(Y).priority == 90  # type: ignore[union-attr]

    events = engine.handle_packet(_packet(X, X_DATA, priority=100, sequence=1))
    assert _kinds(events) == [EventKind.CHANNEL_DATA_UPDATED]
    assert engine.channel_data == X_DATA


def test_priority_raise_takes_over_immediately() -> None:
    engine, _scheduler = _two_sources()

    events = engine.handle_packet(_packet(X, X_DATA, priority=200, sequence=1))

    assert _kinds(events) == [EventKind.CHANNEL_DATA_UPDATED]
    assert engine.winning_priority() == 200
    assert engine.tracker.levels() == {200: 1, 150: 1}


def test_source_below_default_priority_never_commits() -> None:
    engine, _scheduler = _engine()

    events = engine.handle_packet(_packet(X, X_DATA, priority=50))

    assert _kinds(events) == [EventKind.SOURCE_ADDED]
    assert engine.channel_data == bytes(512)

    engine, _scheduler = _engine(default_priority=0)
    events = engine.handle_packet(_packet(X, X_DATA, priority=50))
    assert _kinds(events) == [EventKind.SOURCE_ADDED, EventKind.CHANNEL_DATA_UPDATED]


# ---------------------------------------------------------------------------
# Event queue and failures
# ---------------------------------------------------------------------------


def test_drain_returns_events_in_order_and_clears() -> None:
    engine, scheduler = _engine()
    engine.handle_packet(_packet(X, X_DATA))
    engine.handle_packet(_packet(Y, Y_DATA, priority=150))
    scheduler.advance(3.0)

    events = engine.drain_events()

    assert [(event.kind, event.cid) for event in events] == [
        (EventKind.SOURCE_ADDED, X),
        (EventKind.CHANNEL_DATA_UPDATED, X),
        (EventKind.SOURCE_ADDED, Y),
        (EventKind.CHANNEL_DATA_UPDATED, Y),
        (EventKind.SOURCE_REMOVED, X),
        (EventKind.SOURCE_REMOVED, Y),
    ]
    assert engine.drain_events() == []


class _FailingScheduler(ManualTimerScheduler):
    def schedule(self, cid: bytes, duration: float) -> TimerHandle:
        raise E131TimerError("timer table exhausted", cid=cid)


def test_timer_failure_propagates_without_partial_admission() -> None:
    config = ReceiverConfig(max_sources=2)
    engine = UniverseEngine(config, _FailingScheduler())

    with pytest.raises(E131TimerError):
        engine.handle_packet(_packet(X, X_DATA))

    assert len(engine) == 0
    assert engine.total_sources() == 0
    assert engine.drain_events() == []
    assert engine.channel_data == bytes(512)


def test_close_cancels_all_timers_silently() -> None:
    engine, scheduler = _two_sources()

    engine.close()

    assert len(engine) == 0
    assert scheduler.pending == 0
    assert engine.winning_priority() == 100
    assert engine.drain_events() == []


# ---------------------------------------------------------------------------
# Invariants under random traffic
# ---------------------------------------------------------------------------


def test_invariants_hold_under_random_traffic() -> None:
    rng = random.Random(1131)
    cids = [bytes([n]) * 16 for n in range(6)]
    engine, scheduler = _engine(max_sources=3)
    sequences = {cid: 0 for cid in cids}
    registered: set[bytes] = set()

    for _step in range(2000):
        if rng.random() < 0.1:
            scheduler.advance(rng.choice([0.5, 1.0, 3.0]))
        else:
            cid = rng.choice(cids)
            if rng.random() < 0.2:
                sequence = (sequences[cid] - rng.randint(0, 5)) & 0xFF
            else:
                sequences[cid] = (sequences[cid] + 1) & 0xFF
                sequence = sequences[cid]
            before = engine.channel_data
            packet = _packet(
                cid,
                bytes([rng.randint(0, 255)] * 512),
                priority=rng.choice([50, 100, 100, 150, 200]),
                sequence=sequence,
                terminated=rng.random() < 0.05,
            )
            events = engine.handle_packet(packet)
            if EventKind.CHANNEL_DATA_UPDATED in _kinds(events):
                assert packet.priority >= engine.winning_priority()
            else:
                assert engine.channel_data == before

        for event in engine.drain_events():
            if event.kind is EventKind.SOURCE_ADDED:
                assert event.cid not in registered
                registered.add(event.cid)
            elif event.kind is EventKind.SOURCE_REMOVED:
                assert event.cid in registered
                registered.remove(event.cid)

        assert len(engine) <= 3
        assert {record.cid for record in engine.sources()} == registered
        assert scheduler.pending == len(engine)
        priorities = [record.priority for record in engine.sources()]
        assert engine.winning_priority() == max([100, *priorities])
