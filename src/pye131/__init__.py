"""pye131 - E1.31 (sACN) receiver with per-universe source arbitration."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pye131")
except PackageNotFoundError:
    __version__ = "0+local"

from pye131._codec import E131Codec, PacketCodec, build_data_packet, encode_packet, parse_packet
from pye131.config import ReceiverConfig
from pye131.engine.events import EventKind, RemovalReason, UniverseEvent
from pye131.engine.priority import PriorityTracker
from pye131.engine.registry import SourceRecord, SourceRegistry
from pye131.engine.scheduler import AsyncioTimerScheduler, ManualTimerScheduler, TimerHandle, TimerScheduler
from pye131.engine.universe import ChannelBuffer, UniverseEngine
from pye131.exceptions import (
    E131ConfigError,
    E131Error,
    E131PacketError,
    E131StateError,
    E131TimerError,
    E131TransportError,
    SourceLimitError,
)
from pye131.models import DataPacket, PacketOptions, format_cid
from pye131.output import FrameSink, LoggingSink, PixelMapper, PixelOutput
from pye131.receiver import E131Receiver

__all__ = [
    "__version__",
    "AsyncioTimerScheduler",
    "ChannelBuffer",
    "DataPacket",
    "E131Codec",
    "E131ConfigError",
    "E131Error",
    "E131PacketError",
    "E131Receiver",
    "E131StateError",
    "E131TimerError",
    "E131TransportError",
    "EventKind",
    "FrameSink",
    "LoggingSink",
    "ManualTimerScheduler",
    "PacketCodec",
    "PacketOptions",
    "PixelMapper",
    "PixelOutput",
    "PriorityTracker",
    "ReceiverConfig",
    "RemovalReason",
    "SourceLimitError",
    "SourceRecord",
    "SourceRegistry",
    "TimerHandle",
    "TimerScheduler",
    "UniverseEngine",
    "UniverseEvent",
    "build_data_packet",
    "encode_packet",
    "format_cid",
    "parse_packet",
]
