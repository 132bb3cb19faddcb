"""Base model shared by pye131 data models.

Every model is frozen: packets and events are values, created once by
the codec or engine and never mutated afterwards.
"""

from __future__ import annotations

from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict

from pye131._constants import CID_LENGTH


def _check_cid(value: bytes) -> bytes:
    if len(value) != CID_LENGTH:
        raise ValueError(f"cid must be {CID_LENGTH} bytes, got {len(value)}")
    return value


Cid = Annotated[bytes, AfterValidator(_check_cid)]
"""16-byte source component identifier, compared by exact byte equality."""


def format_cid(cid: bytes) -> str:
    """Render a CID as ``0x`` followed by 32 lowercase hex digits."""
    return f"0x{cid.hex()}"


class E131BaseModel(BaseModel):
    """Base for pye131 value models."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )
