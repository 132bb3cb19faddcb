"""Asyncio UDP receiver feeding a universe engine."""

from __future__ import annotations

import asyncio
import logging
import socket
import struct
from collections.abc import Callable
from typing import Any

from pye131._codec import PacketCodec, parse_packet
from pye131._constants import multicast_group
from pye131.config import ReceiverConfig
from pye131.engine.events import EventKind, UniverseEvent
from pye131.engine.scheduler import AsyncioTimerScheduler, TimerScheduler
from pye131.engine.universe import UniverseEngine
from pye131.exceptions import E131Error, E131PacketError, E131TransportError
from pye131.output import PixelOutput


class E131Receiver(asyncio.DatagramProtocol):
    """Receives E1.31 datagrams for one universe on an asyncio loop.

    Every datagram and every timer expiry is one engine cycle; after each
    cycle the pending events are handed to ``on_event`` in order and, if
    channel data changed, ``output`` is refreshed.

    Any exception raised while handling a cycle (timer failures, broken
    invariants, a failing callback) is fatal: the receiver closes and
    :meth:`wait_closed` re-raises it.

    Usage::

        async with E131Receiver(config, on_event=print) as receiver:
            await receiver.wait_closed()
    """

    def __init__(
        self,
        config: ReceiverConfig,
        *,
        on_event: Callable[[UniverseEvent], None] | None = None,
        output: PixelOutput | None = None,
        codec: PacketCodec | None = None,
        scheduler: TimerScheduler | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._on_event = on_event
        self._output = output
        self._scheduler = scheduler or AsyncioTimerScheduler()
        self._engine = UniverseEngine(config, self._scheduler, codec=codec)
        self._scheduler.set_expiry_handler(self._on_source_expired)
        self._logger = logger or logging.getLogger(__name__)
        self._transport: asyncio.DatagramTransport | None = None
        self._closed: asyncio.Future[None] | None = None
        self._datagrams = 0
        self._dropped = 0

    @property
    def engine(self) -> UniverseEngine:
        return self._engine

    @property
    def is_running(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    @property
    def local_address(self) -> tuple[str, int] | None:
        """Address the socket is bound to, while running."""
        if self._transport is None:
            return None
        sockname = self._transport.get_extra_info("sockname")
        return (sockname[0], sockname[1]) if sockname else None

    @property
    def stats(self) -> dict[str, int]:
        return {"datagrams": self._datagrams, "dropped": self._dropped}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> E131Receiver:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.close()

    async def start(self) -> None:
        """Bind the UDP socket and start receiving."""
        loop = asyncio.get_running_loop()
        self._closed = loop.create_future()
        try:
            await loop.create_datagram_endpoint(
                lambda: self,
                local_addr=(self._config.bind_address, self._config.port),
                family=socket.AF_INET,
                reuse_port=hasattr(socket, "SO_REUSEPORT"),
            )
        except OSError as exc:
            raise E131TransportError(
                f"Unable to bind {self._config.bind_address}:{self._config.port}: {exc}"
            ) from exc

        if self._config.join_multicast:
            self._join_multicast()
        self._logger.info(
            "Listening for DMX data addressed to universe %d on %s:%d",
            self._config.universe,
            self._config.bind_address,
            self._config.port,
        )

    def _join_multicast(self) -> None:
        assert self._transport is not None
        sock = self._transport.get_extra_info("socket")
        group = multicast_group(self._config.universe)
        membership = struct.pack("4s4s", socket.inet_aton(group), socket.inet_aton(self._config.bind_address))
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
        except OSError as exc:
            self.close()
            raise E131TransportError(f"Unable to join multicast group {group}: {exc}") from exc
        self._logger.debug("Joined multicast group %s", group)

    def close(self) -> None:
        """Stop receiving and forget all sources."""
        transport = self._transport
        self._transport = None
        self._engine.close()
        if transport is not None:
            transport.close()
        elif self._closed is not None and not self._closed.done():
            self._closed.set_result(None)

    async def wait_closed(self) -> None:
        """Wait until the receiver closes; re-raise the error that closed it."""
        if self._closed is None:
            raise RuntimeError("receiver was never started")
        await self._closed

    # ------------------------------------------------------------------
    # asyncio.DatagramProtocol
    # ------------------------------------------------------------------

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: tuple[str | Any, int]) -> None:
        self._datagrams += 1
        try:
            packet = parse_packet(data)
        except E131PacketError as exc:
            self._dropped += 1
            self._logger.debug("Dropping datagram from %s: %s", addr, exc)
            return
        self._cycle(self._engine.handle_packet, packet)

    def error_received(self, exc: Exception) -> None:
        self._logger.warning("Error on E1.31 socket: %s", exc)
        self._fail(E131TransportError(f"error on E1.31 socket: {exc}"))

    def connection_lost(self, exc: Exception | None) -> None:
        self._transport = None
        if self._closed is None or self._closed.done():
            return
        if exc is not None:
            self._closed.set_exception(E131TransportError(f"E1.31 socket closed: {exc}"))
        else:
            self._closed.set_result(None)

    # ------------------------------------------------------------------
    # Engine cycles
    # ------------------------------------------------------------------

    def _on_source_expired(self, cid: bytes) -> None:
        self._cycle(self._engine.timer_expired, cid)

    def _cycle(self, trigger: Callable[[Any], Any], arg: Any) -> None:
        if self._closed is not None and self._closed.done():
            return
        try:
            trigger(arg)
            self._dispatch(self._engine.drain_events())
        except Exception as exc:
            self._logger.debug("Fatal error processing E1.31 data", exc_info=True)
            self._fail(exc)

    def _dispatch(self, events: list[UniverseEvent]) -> None:
        updated = False
        for event in events:
            updated = updated or event.kind is EventKind.CHANNEL_DATA_UPDATED
            if self._on_event is not None:
                self._on_event(event)
        if updated and self._output is not None:
            self._output.refresh(self._engine.buffer)

    def _fail(self, exc: BaseException) -> None:
        if self._closed is not None and not self._closed.done():
            self._closed.set_exception(exc)
        # Timers must not outlive the failure; the first error stays the reported one.
        try:
            self._engine.close()
        except E131Error as close_exc:
            self._logger.warning("Unable to release sources after failure: %s", close_exc)
        transport = self._transport
        self._transport = None
        if transport is not None:
            transport.close()
