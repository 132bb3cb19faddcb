"""Internal constants shared across the library."""

#: UDP port assigned to E1.31 by IANA.
DEFAULT_PORT = 5568

#: Network data loss timeout in seconds (E1.31 section 6.7.1).
NETWORK_DATA_LOSS_TIMEOUT: float = 2.5

# ------------------------------------------------------------------
# Priorities
# ------------------------------------------------------------------

MIN_PRIORITY = 0
MAX_PRIORITY = 200
DEFAULT_PRIORITY = 100

# ------------------------------------------------------------------
# Universe / channel layout
# ------------------------------------------------------------------

MIN_UNIVERSE = 1
MAX_UNIVERSE = 63999
CHANNEL_COUNT = 512
CID_LENGTH = 16
SOURCE_NAME_LENGTH = 64

#: Start code marking property values as plain DMX channel levels.
NULL_START_CODE = 0x00

# ------------------------------------------------------------------
# Packet layout
# ------------------------------------------------------------------

ACN_PACKET_IDENTIFIER = b"ASC-E1.17\x00\x00\x00"
PREAMBLE_SIZE = 0x0010
POSTAMBLE_SIZE = 0x0000

VECTOR_ROOT_E131_DATA = 0x00000004
VECTOR_E131_DATA_PACKET = 0x00000002
VECTOR_DMP_SET_PROPERTY = 0x02
DMP_ADDRESS_DATA_TYPE = 0xA1
DMP_FIRST_PROPERTY_ADDRESS = 0x0000
DMP_ADDRESS_INCREMENT = 0x0001

#: Header length up to and including the property value count.
HEADER_LENGTH = 125
#: Start code plus 512 channels.
MAX_PROPERTY_VALUES = CHANNEL_COUNT + 1
MAX_PACKET_LENGTH = HEADER_LENGTH + MAX_PROPERTY_VALUES

OPTION_PREVIEW = 0x80
OPTION_TERMINATED = 0x40
OPTION_FORCE_SYNC = 0x20

#: Sequence differences in (-STALE_WINDOW, 0] are treated as replays.
STALE_WINDOW = 20


def multicast_group(universe: int) -> str:
    """Return the IPv4 multicast group carrying *universe*.

    Raises :class:`ValueError` if *universe* is outside 1-63999.
    """
    if not MIN_UNIVERSE <= universe <= MAX_UNIVERSE:
        raise ValueError(f"universe must be between {MIN_UNIVERSE} and {MAX_UNIVERSE}, got {universe}")
    return f"239.255.{universe >> 8}.{universe & 0xFF}"
