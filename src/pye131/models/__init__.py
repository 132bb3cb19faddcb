"""Typed data models for pye131."""

from pye131.models._base import Cid, E131BaseModel, format_cid
from pye131.models.packet import DataPacket, PacketOptions

__all__ = [
    "Cid",
    "DataPacket",
    "E131BaseModel",
    "PacketOptions",
    "format_cid",
]
