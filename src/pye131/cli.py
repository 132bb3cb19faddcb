"""Command line entry point: receive one universe and render it to pixels."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from collections.abc import Sequence

from pye131 import __version__
from pye131.config import ReceiverConfig
from pye131.engine.events import EventKind, RemovalReason, UniverseEvent
from pye131.engine.universe import UniverseEngine
from pye131.exceptions import E131ConfigError, E131Error
from pye131.models._base import format_cid
from pye131.output import LoggingSink, PixelMapper, PixelOutput
from pye131.receiver import E131Receiver

_LOG = logging.getLogger("pye131")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pye131",
        description="Receive an E1.31 (sACN) universe and merge its sources.",
    )
    parser.add_argument("--config", metavar="FILE", help="JSON configuration file")
    parser.add_argument("--universe", type=int, help="universe to listen on")
    parser.add_argument("--max-sources", type=int, help="maximum number of sources")
    parser.add_argument("--offset", type=int, help="pixel data channel offset")
    parser.add_argument("--pixels", type=int, help="number of RGB pixels to render")
    parser.add_argument(
        "--ignore-preview",
        action="store_const",
        const=True,
        default=None,
        help="arbitrate preview packets like live data",
    )
    parser.add_argument("--bind", help="local address to bind")
    parser.add_argument("--port", type=int, help="local UDP port")
    parser.add_argument(
        "--multicast",
        action="store_const",
        const=True,
        default=None,
        help="join the universe's multicast group",
    )
    parser.add_argument("--verbose", action="store_true", help="enable verbose output for debugging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def load_config(args: argparse.Namespace) -> ReceiverConfig:
    """Environment first, then the config file, then command line flags."""
    file_settings = ReceiverConfig.read_file(args.config) if args.config else {}
    try:
        config = ReceiverConfig.from_env(**file_settings)
    except TypeError as exc:
        raise E131ConfigError(f"Configuration file {args.config}: {exc}") from exc
    return config.merged(
        universe=args.universe,
        max_sources=args.max_sources,
        channel_offset=args.offset,
        pixel_count=args.pixels,
        ignore_preview_flag=args.ignore_preview,
        bind_address=args.bind,
        port=args.port,
        join_multicast=args.multicast,
    )


def describe_event(event: UniverseEvent, engine: UniverseEngine) -> str | None:
    """Human readable log line for *event*, or ``None`` for data updates."""
    cid = format_cid(event.cid)
    status = f"(Current max priority: {engine.winning_priority()} [{engine.winning_sources()} sources])"
    if event.kind is EventKind.SOURCE_ADDED:
        return f"Source {cid} added to universe. {status}"
    if event.kind is EventKind.SOURCE_REMOVED:
        why = "transmission terminated" if event.reason is RemovalReason.TERMINATED else "timed out"
        return f"Source {cid} removed from universe ({why}). {status}"
    if event.kind is EventKind.SOURCE_LIMIT_REACHED:
        return f"Source {cid} not added to universe: source limit reached"
    return None


async def run(config: ReceiverConfig) -> None:
    output = PixelOutput(PixelMapper(config.pixel_count, config.channel_offset), LoggingSink())
    receiver: E131Receiver

    def on_event(event: UniverseEvent) -> None:
        line = describe_event(event, receiver.engine)
        if line is not None:
            _LOG.info("%s", line)

    receiver = E131Receiver(config, on_event=on_event, output=output)
    loop = asyncio.get_running_loop()
    async with receiver:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, receiver.close)
        await receiver.wait_closed()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args)
        _LOG.debug("Configuration settings: %s", config)
        asyncio.run(run(config))
    except E131Error as exc:
        _LOG.critical("Error running receiver: %s", exc)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
