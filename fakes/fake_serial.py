"""Fake serial connection that simulates an APC100 people counter.

Emulates the wire protocol documented in people_counter_lib.protocol: the
status query is answered with a response frame built from the fake's
counters, reset frames clear them, and nothing else is answered. Failure
modes (silence, malformed replies, split replies, write errors, open errors,
dropped connections) can be switched on per test.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import serial

from people_counter_lib import parsing, protocol
from people_counter_lib.models import Reading

logger = logging.getLogger(__name__)


class FakeWriter:
    """Write half handed to the transport; forwards bytes to the fake device."""

    def __init__(self, device: "FakeCounterDevice") -> None:
        self._device = device
        self._closing = False

    def write(self, data: bytes) -> None:
        if self._closing:
            raise serial.SerialException("Port is closed")
        self._device._handle_write(data)

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def close(self) -> None:
        self._closing = True
        self._device.closed_count += 1

    def is_closing(self) -> bool:
        return self._closing


class FakeCounterDevice:
    """Deterministic simulator of the counter's RS485 behaviour.

    Pass ``device.open_connection`` as the transport's ``connection_factory``.
    """

    def __init__(
        self,
        entries: int = 0,
        exits: int = 0,
        current_count: int = 0,
        header: str = protocol.RESPONSE_HEADER,
        response_delay: float = 0.0,
    ) -> None:
        """Initialize fake counter.

        Args:
            entries: Initial cumulative entries
            exits: Initial cumulative exits
            current_count: Initial occupancy
            header: Header token placed in field 0 of responses
            response_delay: Seconds between receiving a query and replying
        """
        self.entries = entries
        self.exits = exits
        self.current_count = current_count
        self.output1 = False
        self.output2 = False
        self.count_enabled = True
        self.button_pressed = False
        self.sensor_ok = True
        self.limit_exceeded = False
        self.header = header
        self.response_delay = response_delay

        # Failure switches
        self.silent = False
        self.malformed_response: Optional[str] = None
        self.chunk_size: Optional[int] = None
        self.fail_open = False
        self.fail_writes_after: Optional[int] = None

        # Observations
        self.writes: List[Tuple[float, bytes]] = []
        self.open_paths: List[str] = []
        self.closed_count = 0
        self.queries_answered = 0

        self._reader: Optional[asyncio.StreamReader] = None

    # ========================================================================
    # Connection factory
    # ========================================================================

    async def open_connection(self, path: str, baud: int) -> Tuple[asyncio.StreamReader, FakeWriter]:
        """Stand-in for serial_asyncio.open_serial_connection."""
        if self.fail_open:
            raise serial.SerialException(f"could not open port {path}: [Errno 2] No such file")
        self.open_paths.append(path)
        self._reader = asyncio.StreamReader()
        logger.debug(f"FakeCounterDevice opened {path} at {baud} baud")
        return self._reader, FakeWriter(self)

    @property
    def open_count(self) -> int:
        return len(self.open_paths)

    @property
    def frames_written(self) -> List[str]:
        return [data.decode("ascii") for _, data in self.writes]

    # ========================================================================
    # Device behaviour
    # ========================================================================

    def response_frame(self) -> str:
        """Status frame for the current counters."""
        snapshot = Reading(
            ts=datetime.now(timezone.utc),
            entries=self.entries,
            exits=self.exits,
            current_count=self.current_count,
            output1=self.output1,
            output2=self.output2,
            count_enabled=self.count_enabled,
            button_pressed=self.button_pressed,
            sensor_ok=self.sensor_ok,
            limit_exceeded=self.limit_exceeded,
        )
        return parsing.format_response(snapshot, header=self.header)

    def walk_in(self, people: int = 1) -> None:
        self.entries += people
        self.current_count += people

    def walk_out(self, people: int = 1) -> None:
        self.exits += people
        self.current_count = max(0, self.current_count - people)

    def send_unsolicited(self, data: bytes) -> None:
        """Push bytes to the host without a request (line noise, late replies)."""
        if self._reader is not None:
            self._reader.feed_data(data)

    def disconnect(self) -> None:
        """Simulate the cable being pulled: the host sees end of stream."""
        if self._reader is not None:
            self._reader.feed_eof()

    def _handle_write(self, data: bytes) -> None:
        if self.fail_writes_after is not None and len(self.writes) >= self.fail_writes_after:
            raise serial.SerialException("write failed: [Errno 5] Input/output error")

        loop = asyncio.get_running_loop()
        self.writes.append((loop.time(), data))
        frame = data.decode("ascii", errors="replace")
        logger.debug(f"FakeCounterDevice received: {frame!r}")

        if frame == protocol.QUERY_FRAME:
            self._schedule_reply(loop)
        elif frame == protocol.RESET_CURRENT_FRAME:
            self.current_count = 0
        elif frame == protocol.RESET_ENTRIES_FRAME:
            self.entries = 0
        elif frame == protocol.RESET_EXITS_FRAME:
            self.exits = 0

    def _schedule_reply(self, loop: asyncio.AbstractEventLoop) -> None:
        if self.silent:
            return

        payload = (self.malformed_response or self.response_frame()).encode("ascii")
        self.queries_answered += 1
        if not self.chunk_size:
            loop.call_later(self.response_delay, self.send_unsolicited, payload)
            return

        # Deliver in pieces, one per loop iteration
        for index, offset in enumerate(range(0, len(payload), self.chunk_size)):
            chunk = payload[offset:offset + self.chunk_size]
            loop.call_later(self.response_delay + index * 0.001, self.send_unsolicited, chunk)
