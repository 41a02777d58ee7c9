"""Tests for response frame decoding and command frame encoding."""

from datetime import datetime, timezone

import pytest

from people_counter_lib import parsing, protocol
from people_counter_lib.errors import InvalidResetScope, InvalidResponse
from people_counter_lib.models import Reading, ResetScope


def test_parse_documented_frame() -> None:
    """Test decoding the reference status frame."""
    reading = parsing.parse_response("[0000 BTW ,000101,000050,000051,1,0,1,0,1,0]")

    assert reading.entries == 101
    assert reading.exits == 50
    assert reading.current_count == 51
    assert reading.output1 is True
    assert reading.output2 is False
    assert reading.count_enabled is True
    assert reading.button_pressed is False
    assert reading.sensor_ok is True
    assert reading.limit_exceeded is False
    assert reading.raw == "[0000 BTW ,000101,000050,000051,1,0,1,0,1,0]"


def test_parse_uses_given_timestamp() -> None:
    """Test that an explicit capture time is kept."""
    ts = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
    reading = parsing.parse_response("[0000 BTW ,1,2,3,0,0,0,0,0,0]", ts=ts)
    assert reading.ts == ts


def test_parse_trims_whitespace_and_trailing_bytes() -> None:
    """Test fields padded with spaces and text after the terminator."""
    reading = parsing.parse_response("  [ 0000 BTW , 12 , 7 , 5 , 0 , 1 , 1 , 1 , 0 , 1 ]\r\n")

    assert (reading.entries, reading.exits, reading.current_count) == (12, 7, 5)
    assert reading.output2 is True
    assert reading.button_pressed is True
    assert reading.limit_exceeded is True


def test_parse_nonzero_is_true() -> None:
    """Test that any nonzero flag value decodes as True."""
    reading = parsing.parse_response("[0000 BTW ,0,0,0,2,9,0,0,0,0]")
    assert reading.output1 is True
    assert reading.output2 is True


def test_parse_unparseable_numbers_default_to_zero() -> None:
    """Test lenient numeric decoding of garbled fields."""
    reading = parsing.parse_response("[0000 BTW ,abc,,12x,?,0,1,0,1,0]")

    assert reading.entries == 0
    assert reading.exits == 0
    assert reading.current_count == 12  # Leading digits are kept
    assert reading.output1 is False


def test_parse_extra_fields_ignored() -> None:
    """Test that firmware appending fields does not break decoding."""
    reading = parsing.parse_response("[0000 BTW ,5,4,1,0,0,1,0,1,0,99,98]")
    assert reading.entries == 5
    assert reading.limit_exceeded is False


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "0000 BTW ,1,2,3,0,0,0,0,0,0]",  # No frame start
        "[0000 BTW ,1,2,3,0,0,0,0,0,0",  # No terminator
        "[0000 BTW ,1,2,3,0,0,0,0,0]",  # Nine fields
        "[]",
    ],
)
def test_parse_rejects_malformed_frames(raw: str) -> None:
    """Test that framing and field-count violations raise InvalidResponse."""
    with pytest.raises(InvalidResponse):
        parsing.parse_response(raw)


def test_format_then_parse_preserves_fields() -> None:
    """Test that an encoded reading decodes back to the same values."""
    original = Reading(
        ts=datetime.now(timezone.utc),
        entries=123456,
        exits=654,
        current_count=42,
        output1=False,
        output2=True,
        count_enabled=True,
        button_pressed=True,
        sensor_ok=False,
        limit_exceeded=True,
    )

    decoded = parsing.parse_response(parsing.format_response(original))

    for name in (
        "entries", "exits", "current_count", "output1", "output2",
        "count_enabled", "button_pressed", "sensor_ok", "limit_exceeded",
    ):
        assert getattr(decoded, name) == getattr(original, name), name


def test_format_matches_device_layout() -> None:
    """Test six-digit zero padding and header spacing."""
    reading = Reading(
        ts=datetime.now(timezone.utc), entries=101, exits=50, current_count=51,
        output1=True, count_enabled=True, sensor_ok=True,
    )
    assert parsing.format_response(reading) == "[0000 BTW ,000101,000050,000051,1,0,1,0,1,0]"


def test_query_frame_is_bit_exact() -> None:
    """Test the status query frame bytes."""
    assert protocol.QUERY_FRAME.encode("ascii") == b"[0000 BTR ]"


def test_reset_all_frames_in_fixed_order() -> None:
    """Test current -> entries -> exits ordering for a full reset."""
    assert parsing.make_reset_frames(ResetScope.ALL) == [
        "[0000 BTC ]",
        "[0000 BTI ]",
        "[0000 BTD ]",
    ]


@pytest.mark.parametrize(
    "scope, frame",
    [("current", "[0000 BTC ]"), ("in", "[0000 BTI ]"), ("out", "[0000 BTD ]")],
)
def test_single_scope_reset_frame(scope: str, frame: str) -> None:
    """Test wire names map to a single reset frame."""
    assert parsing.make_reset_frames(scope) == [frame]


def test_unknown_reset_scope_rejected() -> None:
    """Test that an unknown scope raises InvalidResetScope (a ValueError)."""
    with pytest.raises(InvalidResetScope):
        parsing.coerce_scope("everything")
    with pytest.raises(ValueError):
        parsing.make_reset_frames("exits")
