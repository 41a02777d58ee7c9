"""Serial transport and frame codec for people counter communication.

``CounterTransport`` exclusively owns the serial connection. Its public
coroutines never raise for protocol failures: an unavailable port, a write
error, a missed deadline or a malformed frame all come back as ``None`` (for
queries) or ``False`` (for opens and resets), with the failure class kept in
``last_fault`` for diagnostics.
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Awaitable, Callable, Iterator, List, Optional, Protocol, Tuple

import serial
import serial_asyncio

from people_counter_lib import parsing, protocol
from people_counter_lib.errors import InvalidResponse, ResponseTimeout, SerialIOError
from people_counter_lib.models import CommFault, Reading
from people_counter_lib.simulation import CounterSimulator

logger = logging.getLogger(__name__)


class StreamReaderLike(Protocol):
    """Read side of a byte stream (asyncio.StreamReader or a test double)."""

    async def read(self, n: int = -1) -> bytes:
        """Read up to n bytes; b"" means end of stream."""
        ...


class StreamWriterLike(Protocol):
    """Write side of a byte stream (asyncio.StreamWriter or a test double)."""

    def write(self, data: bytes) -> None:
        """Queue bytes for transmission."""
        ...

    async def drain(self) -> None:
        """Wait until queued bytes are handed to the OS."""
        ...

    def close(self) -> None:
        """Close the stream."""
        ...


ConnectionFactory = Callable[[str, int], Awaitable[Tuple[StreamReaderLike, StreamWriterLike]]]


async def open_serial_connection(path: str, baud: int) -> Tuple[StreamReaderLike, StreamWriterLike]:
    """Open a real serial port as an asyncio stream pair (8N1, no flow control).

    Raises:
        serial.SerialException: If the port cannot be opened
    """
    return await serial_asyncio.open_serial_connection(
        url=path,
        baudrate=baud,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE,
        rtscts=False,
        dsrdtr=False,
        xonxoff=False,
    )


class CounterTransport:
    """Frame codec over a single half-duplex serial connection.

    Only one exchange may be in flight at a time; callers are expected to
    serialize through ``AccessQueue``.
    """

    def __init__(
        self,
        port: str = protocol.DEFAULT_PORT,
        baud: int = protocol.DEFAULT_BAUD,
        response_timeout: float = protocol.RESPONSE_TIMEOUT,
        reset_delay: float = protocol.RESET_COMMAND_DELAY,
        simulate: bool = False,
        simulator: Optional[CounterSimulator] = None,
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> None:
        """Initialize transport (does not open the port).

        Args:
            port: Serial device path. Default /dev/ttyS1.
            baud: Baud rate. Default 9600.
            response_timeout: Seconds to wait for a complete response frame.
            reset_delay: Seconds between consecutive reset frames.
            simulate: If True, never touch a port and synthesize readings instead.
            simulator: Optional pre-built simulator (e.g. seeded for tests).
            connection_factory: Coroutine opening (reader, writer) for a path and
                baud. Defaults to a pyserial-asyncio connection.
        """
        self._port = port
        self._baud = baud
        self._response_timeout = response_timeout
        self._reset_delay = reset_delay
        self._simulate = simulate
        self._simulator = simulator or CounterSimulator()
        self._connection_factory = connection_factory or open_serial_connection

        self._reader: Optional[StreamReaderLike] = None
        self._writer: Optional[StreamWriterLike] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._active_path: Optional[str] = None

        # Receive side: bytes pumped from the stream, signalled on terminator
        self._rx = bytearray()
        self._rx_error: Optional[Exception] = None
        self._frame_ready: Optional[asyncio.Event] = None

        self._busy = False
        self._last_fault = CommFault.NONE

    # ========================================================================
    # Connection Management
    # ========================================================================

    @property
    def port(self) -> str:
        """Configured serial device path."""
        return self._port

    @property
    def simulate(self) -> bool:
        """True when readings are synthesized instead of read from a device."""
        return self._simulate

    @property
    def is_open(self) -> bool:
        """Check if the port is open and its receive pump is alive."""
        return (
            self._writer is not None
            and self._pump_task is not None
            and not self._pump_task.done()
        )

    @property
    def last_fault(self) -> CommFault:
        """Failure class of the most recent exchange (NONE after a success)."""
        return self._last_fault

    async def open(self, path: Optional[str] = None) -> bool:
        """Open the serial port. Idempotent.

        Args:
            path: Override for the configured device path.

        Returns:
            True if the port is open, False if it could not be opened
        """
        if self.is_open:
            return True

        if self._writer is not None:
            # Receive pump died; drop the stale stream before reconnecting
            self.close()

        path = path or self._port
        try:
            reader, writer = await self._connection_factory(path, self._baud)
        except Exception as e:
            logger.warning(f"Failed to open {path} at {self._baud} baud: {e}")
            self._last_fault = CommFault.TRANSPORT_UNAVAILABLE
            return False

        self._reader = reader
        self._writer = writer
        self._active_path = path
        self._rx.clear()
        self._rx_error = None
        self._frame_ready = asyncio.Event()
        self._pump_task = asyncio.create_task(self._pump(reader), name="people-counter-rx")
        logger.info(f"Opened serial port {path} at {self._baud} baud")
        return True

    def close(self) -> None:
        """Close the serial port if open."""
        if self._pump_task is not None:
            self._pump_task.cancel()
            self._pump_task = None

        if self._writer is not None:
            try:
                self._writer.close()
            except Exception as e:
                logger.warning(f"Error while closing serial port: {e}")
            self._writer = None
            self._reader = None
            logger.info(f"Closed serial port {self._active_path}")

    # ========================================================================
    # Protocol Operations
    # ========================================================================

    async def query(self) -> Optional[Reading]:
        """Request a status frame and decode it.

        Returns:
            Reading, or None on open failure, write failure, timeout or
            malformed response
        """
        if self._simulate:
            await asyncio.sleep(protocol.SIMULATED_RESPONSE_DELAY)
            self._last_fault = CommFault.NONE
            return self._simulator.next_reading()

        if not self.is_open and not await self.open():
            return None

        with self._exclusive("query"):
            self._discard_input()

            try:
                await self._write_frame(protocol.QUERY_FRAME)
            except SerialIOError as e:
                return self._fail(CommFault.WRITE_FAILED, f"Query not sent: {e}")

            try:
                raw = await self._read_frame()
            except ResponseTimeout as e:
                return self._fail(CommFault.TIMEOUT, str(e))
            except SerialIOError as e:
                self.close()
                return self._fail(CommFault.TRANSPORT_UNAVAILABLE, f"Receive failed: {e}")

            try:
                reading = parsing.parse_response(raw)
            except InvalidResponse as e:
                return self._fail(CommFault.MALFORMED_FRAME, str(e))

        logger.debug(f"Received frame: {reading.raw!r}")
        self._last_fault = CommFault.NONE
        return reading

    async def reset(self, scope) -> bool:
        """Send the reset command(s) for a counter scope.

        No reply is expected. For ResetScope.ALL three frames are written
        (current, entries, exits) with ``reset_delay`` between them; the
        sequence stops at the first failed write.

        Args:
            scope: ResetScope or its wire name

        Returns:
            True if every frame was accepted by the transport

        Raises:
            InvalidResetScope: If scope is not a known reset scope
        """
        scope = parsing.coerce_scope(scope)
        frames = parsing.make_reset_frames(scope)

        if self._simulate:
            self._simulator.reset(scope)
            self._last_fault = CommFault.NONE
            return True

        if not self.is_open and not await self.open():
            return False

        with self._exclusive("reset"):
            sent = await self._write_sequence(frames)

        if sent < len(frames):
            logger.warning(f"Reset ({scope.value}) aborted after {sent}/{len(frames)} frames")
            return False

        logger.info(f"Reset sent ({scope.value})")
        self._last_fault = CommFault.NONE
        return True

    # ========================================================================
    # Internal
    # ========================================================================

    async def _write_sequence(self, frames: List[str]) -> int:
        """Write frames in order, pausing between them. Returns count sent."""
        for index, frame in enumerate(frames):
            if index:
                await asyncio.sleep(self._reset_delay)
            try:
                await self._write_frame(frame)
            except SerialIOError as e:
                self._fail(CommFault.WRITE_FAILED, f"Failed to send {frame!r}: {e}")
                return index
        return len(frames)

    async def _write_frame(self, frame: str) -> None:
        if self._writer is None:
            raise SerialIOError("Serial port is not open")

        data = frame.encode("ascii")
        try:
            self._writer.write(data)
            await self._writer.drain()
        except Exception as e:
            raise SerialIOError(f"Failed to write to port: {e}") from e
        logger.debug(f"Sent {len(data)} bytes: {data!r}")

    async def _read_frame(self) -> str:
        """Wait for a terminator in the receive buffer and return the buffered text."""
        assert self._frame_ready is not None
        try:
            await asyncio.wait_for(self._frame_ready.wait(), timeout=self._response_timeout)
        except asyncio.TimeoutError as e:
            raise ResponseTimeout(
                f"No response within {self._response_timeout * 1000:.0f} ms "
                f"(buffered {bytes(self._rx)!r})"
            ) from e

        if protocol.FRAME_END_BYTE not in self._rx and self._rx_error is not None:
            raise SerialIOError(str(self._rx_error))

        return bytes(self._rx).decode("ascii", errors="replace")

    def _discard_input(self) -> None:
        # Late bytes from an earlier timed-out exchange must not be taken as this reply
        if self._rx:
            logger.debug(f"Discarding {len(self._rx)} stale bytes: {bytes(self._rx)!r}")
        self._rx.clear()
        if self._frame_ready is not None:
            self._frame_ready.clear()

    async def _pump(self, reader: StreamReaderLike) -> None:
        """Background task moving received bytes into the receive buffer."""
        try:
            while True:
                data = await reader.read(protocol.READ_CHUNK)
                if not data:
                    raise SerialIOError("Serial stream closed")
                self._rx.extend(data)
                if protocol.FRAME_END_BYTE in data and self._frame_ready is not None:
                    self._frame_ready.set()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Serial receive error: {e}")
            self._rx_error = e
            if self._frame_ready is not None:
                self._frame_ready.set()

    def _fail(self, fault: CommFault, message: str) -> None:
        self._last_fault = fault
        logger.warning(f"{fault.value}: {message}")
        return None

    @contextmanager
    def _exclusive(self, operation: str) -> Iterator[None]:
        if self._busy:
            raise RuntimeError(
                f"Concurrent {operation} on transport; callers must go through AccessQueue"
            )
        self._busy = True
        try:
            yield
        finally:
            self._busy = False
