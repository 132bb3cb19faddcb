"""Decoded E1.31 data packet.

:class:`DataPacket` mirrors the three protocol layers (root, framing,
DMP) of an E1.31 data packet as decoded from the wire. It performs no
range checking of its own: structural validity is decided by
:meth:`pye131._codec.E131Codec.validate` so that a malformed packet can
still be represented and then rejected by the admission filter.
"""

from __future__ import annotations

from pydantic import Field

from pye131._constants import (
    ACN_PACKET_IDENTIFIER,
    DEFAULT_PRIORITY,
    DMP_ADDRESS_DATA_TYPE,
    DMP_ADDRESS_INCREMENT,
    DMP_FIRST_PROPERTY_ADDRESS,
    NULL_START_CODE,
    OPTION_FORCE_SYNC,
    OPTION_PREVIEW,
    OPTION_TERMINATED,
    POSTAMBLE_SIZE,
    PREAMBLE_SIZE,
    VECTOR_DMP_SET_PROPERTY,
    VECTOR_E131_DATA_PACKET,
    VECTOR_ROOT_E131_DATA,
)
from pye131.models._base import Cid, E131BaseModel


class PacketOptions(E131BaseModel):
    """Flags carried in the framing layer options byte."""

    preview: bool = False
    terminated: bool = False
    force_sync: bool = False

    @classmethod
    def from_byte(cls, options: int) -> PacketOptions:
        return cls(
            preview=bool(options & OPTION_PREVIEW),
            terminated=bool(options & OPTION_TERMINATED),
            force_sync=bool(options & OPTION_FORCE_SYNC),
        )

    def to_byte(self) -> int:
        value = 0
        if self.preview:
            value |= OPTION_PREVIEW
        if self.terminated:
            value |= OPTION_TERMINATED
        if self.force_sync:
            value |= OPTION_FORCE_SYNC
        return value


class DataPacket(E131BaseModel):
    """A decoded E1.31 data packet.

    Header fields default to the values of a well-formed data packet, so
    tests and tools only need to supply the fields they care about.
    """

    # Root layer
    preamble_size: int = PREAMBLE_SIZE
    postamble_size: int = POSTAMBLE_SIZE
    acn_pid: bytes = ACN_PACKET_IDENTIFIER
    root_vector: int = VECTOR_ROOT_E131_DATA
    cid: Cid

    # Framing layer
    frame_vector: int = VECTOR_E131_DATA_PACKET
    source_name: str = ""
    priority: int = DEFAULT_PRIORITY
    sync_address: int = 0
    sequence: int = 0
    options: int = 0
    universe: int = 1

    # DMP layer
    dmp_vector: int = VECTOR_DMP_SET_PROPERTY
    address_type: int = DMP_ADDRESS_DATA_TYPE
    first_address: int = DMP_FIRST_PROPERTY_ADDRESS
    address_increment: int = DMP_ADDRESS_INCREMENT
    property_values: bytes = Field(default=b"\x00", description="Start code followed by channel values")

    @property
    def flags(self) -> PacketOptions:
        return PacketOptions.from_byte(self.options)

    @property
    def start_code(self) -> int | None:
        """First property value, or ``None`` when the packet carries none."""
        if not self.property_values:
            return None
        return self.property_values[0]

    @property
    def has_channel_data(self) -> bool:
        """Whether the property values are DMX channel levels.

        Only packets with at least one property value and a null start
        code carry channel data. Anything else (alternate start codes,
        empty payloads) is treated as synchronization-only.
        """
        return self.start_code == NULL_START_CODE

    @property
    def channel_data(self) -> bytes:
        """Channel levels following the start code (empty if none)."""
        if not self.has_channel_data:
            return b""
        return self.property_values[1:]
