"""Wire protocol constants for the APC100 people counter RS485 interface.

All frames are plain ASCII delimited by ``[`` and ``]``. The device has no
checksum, so framing and field count are the only integrity checks available.
"""

from typing import Final

# ============================================================================
# Framing
# ============================================================================

FRAME_START: Final[str] = "["
FRAME_END: Final[str] = "]"
FIELD_SEPARATOR: Final[str] = ","

FRAME_END_BYTE: Final[bytes] = b"]"

# Header token the device puts in field 0 of a status response
RESPONSE_HEADER: Final[str] = "0000 BTW"

# Header + 9 positional values
RESPONSE_FIELD_COUNT: Final[int] = 10

# Counters are zero-padded to six digits in device responses
COUNTER_WIDTH: Final[int] = 6

# ============================================================================
# Command Frames (sent verbatim, no terminator)
# ============================================================================

QUERY_FRAME: Final[str] = "[0000 BTR ]"  # Read full status
RESET_CURRENT_FRAME: Final[str] = "[0000 BTC ]"  # Clear current occupancy
RESET_ENTRIES_FRAME: Final[str] = "[0000 BTI ]"  # Clear cumulative entries
RESET_EXITS_FRAME: Final[str] = "[0000 BTD ]"  # Clear cumulative exits

# ============================================================================
# Serial Line Settings
# ============================================================================

DEFAULT_PORT: Final[str] = "/dev/ttyS1"
DEFAULT_BAUD: Final[int] = 9600

# ============================================================================
# Timing Constants (seconds)
# ============================================================================

# Deadline for a complete status response after the query frame is written
RESPONSE_TIMEOUT: Final[float] = 1.0

# Gap between consecutive reset frames; the device drops back-to-back commands
RESET_COMMAND_DELAY: Final[float] = 0.05

# Artificial latency of a simulated query
SIMULATED_RESPONSE_DELAY: Final[float] = 0.05

# Default poller cadence
POLL_INTERVAL: Final[float] = 1.0

# Bytes requested per read from the serial stream
READ_CHUNK: Final[int] = 256

# ============================================================================
# Device Identity
# ============================================================================

DEVICE_ID: Final[str] = "d082"
UNIT_ID: Final[str] = "u001"
DEVICE_TYPE: Final[str] = "people_counter"
DEFAULT_CLIENT_ID: Final[str] = "c0101"
