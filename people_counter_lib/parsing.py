"""Pure functions for encoding command frames and decoding status responses."""

import logging
import re
from datetime import datetime, timezone
from typing import List, Optional

from people_counter_lib import protocol
from people_counter_lib.errors import InvalidResetScope, InvalidResponse
from people_counter_lib.models import Reading, ResetScope

logger = logging.getLogger(__name__)

# Leading integer of a field; trailing junk is ignored like the device's own firmware does
_RE_LEADING_INT = re.compile(r"^[+-]?\d+")

_RESET_FRAMES = {
    ResetScope.CURRENT: [protocol.RESET_CURRENT_FRAME],
    ResetScope.ENTRIES: [protocol.RESET_ENTRIES_FRAME],
    ResetScope.EXITS: [protocol.RESET_EXITS_FRAME],
    # Order matters: current, entries, exits
    ResetScope.ALL: [
        protocol.RESET_CURRENT_FRAME,
        protocol.RESET_ENTRIES_FRAME,
        protocol.RESET_EXITS_FRAME,
    ],
}


def _to_int(field: str) -> int:
    match = _RE_LEADING_INT.match(field)
    if not match:
        return 0
    return int(match.group(0))


def _to_bool(field: str) -> bool:
    return _to_int(field) != 0


def parse_response(raw: str, ts: Optional[datetime] = None) -> Reading:
    """Parse a status response frame into a Reading.

    Expected format: [<header>,<entries>,<exits>,<current>,<out1>,<out2>,
    <countEnabled>,<button>,<sensor>,<limitExceeded>]
    Example: "[0000 BTW ,000101,000050,000051,1,0,1,0,1,0]"

    Args:
        raw: Received text, from the frame start up to at least the terminator
        ts: Capture timestamp. Defaults to now (UTC).

    Returns:
        Decoded Reading with ``raw`` set to the trimmed input

    Raises:
        InvalidResponse: If the text is not a frame or has too few fields
    """
    text = raw.strip()
    if not text.startswith(protocol.FRAME_START):
        raise InvalidResponse(f"Response does not start with '[': {raw!r}")

    end = text.find(protocol.FRAME_END)
    if end < 0:
        raise InvalidResponse(f"Response has no terminator: {raw!r}")

    parts = [p.strip() for p in text[1:end].split(protocol.FIELD_SEPARATOR)]
    if len(parts) < protocol.RESPONSE_FIELD_COUNT:
        raise InvalidResponse(
            f"Expected {protocol.RESPONSE_FIELD_COUNT} fields, got {len(parts)}: {raw!r}"
        )

    # parts[0] is the header token (ignored)
    return Reading(
        ts=ts or datetime.now(timezone.utc),
        entries=_to_int(parts[1]),
        exits=_to_int(parts[2]),
        current_count=_to_int(parts[3]),
        output1=_to_bool(parts[4]),
        output2=_to_bool(parts[5]),
        count_enabled=_to_bool(parts[6]),
        button_pressed=_to_bool(parts[7]),
        sensor_ok=_to_bool(parts[8]),
        limit_exceeded=_to_bool(parts[9]),
        raw=text,
    )


def format_response(reading: Reading, header: str = protocol.RESPONSE_HEADER) -> str:
    """Encode a Reading in the device's status response format.

    Used by the simulator and test doubles so synthetic data follows the
    same decode path as real frames.
    """
    width = protocol.COUNTER_WIDTH
    fields = [
        f"{header} ",
        f"{reading.entries:0{width}d}",
        f"{reading.exits:0{width}d}",
        f"{reading.current_count:0{width}d}",
        str(int(reading.output1)),
        str(int(reading.output2)),
        str(int(reading.count_enabled)),
        str(int(reading.button_pressed)),
        str(int(reading.sensor_ok)),
        str(int(reading.limit_exceeded)),
    ]
    return protocol.FRAME_START + protocol.FIELD_SEPARATOR.join(fields) + protocol.FRAME_END


def coerce_scope(scope) -> ResetScope:
    """Accept a ResetScope or its wire name ("current", "in", "out", "all")."""
    if isinstance(scope, ResetScope):
        return scope
    try:
        return ResetScope(scope)
    except ValueError as e:
        raise InvalidResetScope(f"Unknown reset scope: {scope!r}") from e


def make_reset_frames(scope) -> List[str]:
    """Return the command frames for a reset, in transmission order."""
    return list(_RESET_FRAMES[coerce_scope(scope)])
