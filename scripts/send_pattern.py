#!/usr/bin/env python3
"""E1.31 test-pattern sender.

Transmits a moving RGB chase on one universe so a receiver can be
exercised without a lighting console. Several instances with different
``--cid`` and ``--priority`` values reproduce source arbitration:
the higher-priority sender takes over, and stopping it (or sending a
termination with ``--terminate``) hands the output back.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pye131 import PacketOptions, build_data_packet, encode_packet, format_cid  # noqa: E402
from pye131._constants import DEFAULT_PORT, multicast_group  # noqa: E402

_LOG = logging.getLogger("send_pattern")


@dataclass
class SenderStats:
    started_at: float
    packets: int = 0


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Send an E1.31 RGB chase to one universe.",
    )
    parser.add_argument("--universe", type=int, default=1, help="Universe to transmit on.")
    parser.add_argument("--priority", type=int, default=100, help="Source priority (0-200).")
    parser.add_argument(
        "--host",
        default=None,
        help="Unicast destination (default: the universe's multicast group).",
    )
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Destination UDP port.")
    parser.add_argument("--cid", default=None, help="Source CID as 32 hex digits (default: random).")
    parser.add_argument("--name", default="pye131 pattern", help="Source name.")
    parser.add_argument("--pixels", type=int, default=8, help="Number of RGB pixels in the chase.")
    parser.add_argument("--rate", type=float, default=30.0, help="Packets per second.")
    parser.add_argument(
        "--duration",
        type=float,
        default=0,
        help="Stop after N seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--terminate",
        action="store_true",
        help="Send three termination packets when stopping.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


_COLORS = ((255, 0, 0), (0, 255, 0), (0, 0, 255))


def _frame(step: int, pixels: int) -> bytes:
    """One lit pixel walking along the strip, changing color every lap."""
    channels = bytearray(pixels * 3)
    if pixels:
        lit = step % pixels
        color = _COLORS[(step // pixels) % len(_COLORS)]
        channels[lit * 3 : lit * 3 + 3] = bytes(color)
    return bytes(channels)


async def _send(args: argparse.Namespace, cid: bytes, stats: SenderStats) -> None:
    host = args.host or multicast_group(args.universe)
    loop = asyncio.get_running_loop()
    transport, _ = await loop.create_datagram_endpoint(asyncio.DatagramProtocol, remote_addr=(host, args.port))
    _LOG.info("Sending universe %d to %s:%d as %s", args.universe, host, args.port, format_cid(cid))

    interval = 1.0 / args.rate
    sequence = 0
    try:
        while not args.duration or time.monotonic() - stats.started_at < args.duration:
            packet = build_data_packet(
                cid,
                _frame(stats.packets, args.pixels),
                universe=args.universe,
                priority=args.priority,
                sequence=sequence,
                source_name=args.name,
            )
            transport.sendto(encode_packet(packet))
            stats.packets += 1
            sequence = (sequence + 1) & 0xFF
            await asyncio.sleep(interval)
    finally:
        if args.terminate:
            for _ in range(3):
                packet = build_data_packet(
                    cid,
                    b"",
                    universe=args.universe,
                    priority=args.priority,
                    sequence=sequence,
                    source_name=args.name,
                    options=PacketOptions(terminated=True),
                )
                transport.sendto(encode_packet(packet))
                sequence = (sequence + 1) & 0xFF
            _LOG.info("Sent termination")
        transport.close()


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    cid = bytes.fromhex(args.cid) if args.cid else uuid.uuid4().bytes
    if len(cid) != 16:
        print("[send] --cid must be 32 hex digits", file=sys.stderr)
        return 2

    stats = SenderStats(started_at=time.monotonic())
    try:
        asyncio.run(_send(args, cid, stats))
    except KeyboardInterrupt:
        pass
    except OSError as exc:  # pragma: no cover - network/system interaction
        print(f"[send] Socket error: {exc}", file=sys.stderr)
        return 2

    print(f"[send] packets sent: {stats.packets}")
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
