"""Mapping of universe channels onto RGB pixels.

The receiver only produces a 512-slot buffer. Whatever renders it
(an LED strip driver, a preview window) implements :class:`FrameSink`
and is handed complete frames, and only when they changed.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from pye131._constants import CHANNEL_COUNT
from pye131.engine.universe import ChannelBuffer

_logger = logging.getLogger(__name__)

Pixel = tuple[int, int, int]


class FrameSink(Protocol):
    """Consumer of rendered pixel frames."""

    def commit(self, frame: Sequence[Pixel]) -> None: ...


class PixelMapper:
    """Maps buffer slots to pixels, three channels (R, G, B) per pixel.

    Pixel ``i`` reads slots ``offset + 3*i`` to ``offset + 3*i + 2``.
    Channels beyond the end of the universe read as zero.

    The offset counts DMX slots, not pixels: an offset of 3 starts the
    first pixel at the second RGB triplet. Older blinkt-style receivers
    treated the same setting as the index of the first pixel to skip.
    """

    def __init__(self, pixel_count: int, channel_offset: int = 0) -> None:
        if pixel_count < 0:
            raise ValueError(f"pixel_count must not be negative, got {pixel_count}")
        if not 0 <= channel_offset < CHANNEL_COUNT:
            raise ValueError(f"channel_offset must be between 0 and {CHANNEL_COUNT - 1}, got {channel_offset}")
        self.pixel_count = pixel_count
        self.channel_offset = channel_offset

    def map(self, channels: bytes | bytearray | memoryview | ChannelBuffer) -> list[Pixel]:
        data = channels.view() if isinstance(channels, ChannelBuffer) else channels
        size = len(data)
        frame: list[Pixel] = []
        for i in range(self.pixel_count):
            base = self.channel_offset + 3 * i
            rgb = [data[base + k] if base + k < size else 0 for k in range(3)]
            frame.append((rgb[0], rgb[1], rgb[2]))
        return frame


class PixelOutput:
    """Renders the channel buffer to a sink when its pixels change."""

    def __init__(self, mapper: PixelMapper, sink: FrameSink) -> None:
        self._mapper = mapper
        self._sink = sink
        self._frame: list[Pixel] | None = None
        self._generation = -1

    @property
    def frame(self) -> list[Pixel] | None:
        """Last frame committed to the sink."""
        return self._frame

    def refresh(self, buffer: ChannelBuffer) -> bool:
        """Commit the buffer's pixels if anything changed.

        Returns ``True`` when the sink received a new frame.
        """
        if buffer.generation == self._generation:
            return False
        self._generation = buffer.generation
        frame = self._mapper.map(buffer)
        if frame == self._frame:
            return False
        self._frame = frame
        self._sink.commit(frame)
        return True


class LoggingSink:
    """Sink that writes frames to the log at DEBUG level."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _logger
        self.commits = 0

    def commit(self, frame: Sequence[Pixel]) -> None:
        self.commits += 1
        self._logger.debug(
            "Frame %d: %s",
            self.commits,
            " ".join(f"#{r:02x}{g:02x}{b:02x}" for r, g, b in frame),
        )
