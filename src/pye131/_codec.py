"""E1.31 data packet codec.

Decodes datagrams into :class:`~pye131.models.packet.DataPacket` and
answers the per-packet questions the universe engine asks: is the packet
structurally valid, is it a replay of something already seen, which
option flags and universe does it carry.
"""

from __future__ import annotations

import struct
from typing import Protocol

from pye131._constants import (
    ACN_PACKET_IDENTIFIER,
    CID_LENGTH,
    DMP_ADDRESS_DATA_TYPE,
    DMP_ADDRESS_INCREMENT,
    DMP_FIRST_PROPERTY_ADDRESS,
    HEADER_LENGTH,
    MAX_PRIORITY,
    MAX_PROPERTY_VALUES,
    POSTAMBLE_SIZE,
    PREAMBLE_SIZE,
    SOURCE_NAME_LENGTH,
    STALE_WINDOW,
    VECTOR_DMP_SET_PROPERTY,
    VECTOR_E131_DATA_PACKET,
    VECTOR_ROOT_E131_DATA,
)
from pye131.exceptions import E131PacketError
from pye131.models.packet import DataPacket, PacketOptions

# Root layer, framing layer and DMP layer headers, network byte order.
_HEADER = struct.Struct(">HH12sHI16sHI64sBHBBHHBBHHH")

_FLAGS = 0x7000
_FLAGS_MASK = 0xF000
_LENGTH_MASK = 0x0FFF

# Offsets of the flags/length fields, used to compute PDU lengths.
_ROOT_PDU_OFFSET = 16
_FRAMING_PDU_OFFSET = 38
_DMP_PDU_OFFSET = 115


class PacketCodec(Protocol):
    """Structural codec interface consumed by the universe engine.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (:class:`E131Codec`) concrete.
    """

    def validate(self, packet: DataPacket) -> bool: ...

    def is_stale(self, last_sequence: int, packet: DataPacket) -> bool: ...

    def option_flags(self, packet: DataPacket) -> PacketOptions: ...

    def universe_of(self, packet: DataPacket) -> int: ...


def parse_packet(data: bytes) -> DataPacket:
    """Decode a datagram into a :class:`DataPacket`.

    Only the framing is checked here: enough bytes for the header and the
    advertised property values, and root, framing and DMP flags/length
    fields that agree with them. Field values are left for
    :meth:`E131Codec.validate` to judge.

    Raises :class:`E131PacketError` if the datagram is too short or its
    PDU lengths are inconsistent.
    """
    if len(data) < HEADER_LENGTH:
        raise E131PacketError(
            f"datagram too short for an E1.31 data packet ({len(data)} < {HEADER_LENGTH} bytes)",
            length=len(data),
        )
    (
        preamble_size,
        postamble_size,
        acn_pid,
        root_flength,
        root_vector,
        cid,
        frame_flength,
        frame_vector,
        source_name,
        priority,
        sync_address,
        sequence,
        options,
        universe,
        dmp_flength,
        dmp_vector,
        address_type,
        first_address,
        address_increment,
        property_count,
    ) = _HEADER.unpack_from(data)

    end = HEADER_LENGTH + property_count
    if len(data) < end:
        raise E131PacketError(
            f"datagram truncated: {property_count} property values advertised, {len(data) - HEADER_LENGTH} present",
            length=len(data),
        )
    for layer, flength, offset in (
        ("root", root_flength, _ROOT_PDU_OFFSET),
        ("framing", frame_flength, _FRAMING_PDU_OFFSET),
        ("DMP", dmp_flength, _DMP_PDU_OFFSET),
    ):
        if flength & _FLAGS_MASK != _FLAGS or flength & _LENGTH_MASK != end - offset:
            raise E131PacketError(
                f"{layer} layer flags/length 0x{flength:04x} do not match a {end - offset}-byte PDU",
                length=len(data),
            )

    return DataPacket(
        preamble_size=preamble_size,
        postamble_size=postamble_size,
        acn_pid=acn_pid,
        root_vector=root_vector,
        cid=cid,
        frame_vector=frame_vector,
        source_name=source_name.split(b"\x00", 1)[0].decode("utf-8", errors="replace"),
        priority=priority,
        sync_address=sync_address,
        sequence=sequence,
        options=options,
        universe=universe,
        dmp_vector=dmp_vector,
        address_type=address_type,
        first_address=first_address,
        address_increment=address_increment,
        property_values=bytes(data[HEADER_LENGTH:end]),
    )


def encode_packet(packet: DataPacket) -> bytes:
    """Encode *packet* into a datagram, filling in the PDU lengths."""
    values = packet.property_values
    total = HEADER_LENGTH + len(values)
    name = packet.source_name.encode("utf-8")[: SOURCE_NAME_LENGTH - 1]
    header = _HEADER.pack(
        packet.preamble_size,
        packet.postamble_size,
        packet.acn_pid,
        _FLAGS | (total - _ROOT_PDU_OFFSET),
        packet.root_vector,
        packet.cid,
        _FLAGS | (total - _FRAMING_PDU_OFFSET),
        packet.frame_vector,
        name,
        packet.priority,
        packet.sync_address,
        packet.sequence,
        packet.options,
        packet.universe,
        _FLAGS | (total - _DMP_PDU_OFFSET),
        packet.dmp_vector,
        packet.address_type,
        packet.first_address,
        packet.address_increment,
        len(values),
    )
    return header + values


def build_data_packet(
    cid: bytes,
    channels: bytes,
    *,
    universe: int = 1,
    priority: int = 100,
    sequence: int = 0,
    source_name: str = "",
    options: PacketOptions | None = None,
    start_code: int = 0x00,
) -> DataPacket:
    """Build a data packet carrying *channels* behind *start_code*."""
    return DataPacket(
        cid=cid,
        source_name=source_name,
        priority=priority,
        sequence=sequence & 0xFF,
        options=(options or PacketOptions()).to_byte(),
        universe=universe,
        property_values=bytes([start_code]) + bytes(channels),
    )


class E131Codec:
    """Default :class:`PacketCodec` implementation."""

    def validate(self, packet: DataPacket) -> bool:
        """Return ``True`` if *packet* is a structurally valid data packet."""
        if packet.preamble_size != PREAMBLE_SIZE or packet.postamble_size != POSTAMBLE_SIZE:
            return False
        if packet.acn_pid != ACN_PACKET_IDENTIFIER:
            return False
        if packet.root_vector != VECTOR_ROOT_E131_DATA or packet.frame_vector != VECTOR_E131_DATA_PACKET:
            return False
        if packet.dmp_vector != VECTOR_DMP_SET_PROPERTY or packet.address_type != DMP_ADDRESS_DATA_TYPE:
            return False
        if packet.first_address != DMP_FIRST_PROPERTY_ADDRESS or packet.address_increment != DMP_ADDRESS_INCREMENT:
            return False
        if not 1 <= len(packet.property_values) <= MAX_PROPERTY_VALUES:
            return False
        return len(packet.cid) == CID_LENGTH and packet.priority <= MAX_PRIORITY

    def is_stale(self, last_sequence: int, packet: DataPacket) -> bool:
        """Return ``True`` if *packet* is a duplicate or arrived out of order.

        The sequence difference is taken as a signed 8-bit value; packets
        up to ``STALE_WINDOW - 1`` behind (or equal to) the last accepted
        sequence are discarded. Larger jumps backwards are treated as the
        source having restarted.
        """
        diff = (packet.sequence - last_sequence) & 0xFF
        if diff >= 0x80:
            diff -= 0x100
        return -STALE_WINDOW < diff <= 0

    def option_flags(self, packet: DataPacket) -> PacketOptions:
        return packet.flags

    def universe_of(self, packet: DataPacket) -> int:
        return packet.universe
