"""Data models for the people counter library."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class ResetScope(Enum):
    """Counter groups that can be cleared on the device."""

    CURRENT = "current"
    ENTRIES = "in"
    EXITS = "out"
    ALL = "all"


class CommFault(Enum):
    """Class of the most recent failed exchange with the device."""

    NONE = "none"
    TRANSPORT_UNAVAILABLE = "transport_unavailable"
    TIMEOUT = "timeout"
    MALFORMED_FRAME = "malformed_frame"
    WRITE_FAILED = "write_failed"


class PollerState(Enum):
    """Lifecycle states of the change-driven poller."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True)
class Reading:
    """A decoded snapshot of people counter state.

    Attributes:
        ts: UTC timestamp when the frame was decoded.
        entries: Cumulative entry count since the last entries reset.
        exits: Cumulative exit count since the last exits reset.
        current_count: Current occupancy as tracked by the device.
        output1: Digital output 1 state.
        output2: Digital output 2 state.
        count_enabled: Whether the device is currently counting.
        button_pressed: Physical button state.
        sensor_ok: Sensor health flag.
        limit_exceeded: Occupancy limit exceeded flag.
        raw: Frame text the reading was decoded from, for diagnostics.
    """

    ts: datetime
    entries: int
    exits: int
    current_count: int
    output1: bool = False
    output2: bool = False
    count_enabled: bool = False
    button_pressed: bool = False
    sensor_ok: bool = False
    limit_exceeded: bool = False
    raw: Optional[str] = None

    @classmethod
    def zeroed(cls, ts: Optional[datetime] = None) -> "Reading":
        """Build an all-zero reading used to seed the live record."""
        return cls(ts=ts or datetime.now(timezone.utc), entries=0, exits=0, current_count=0)


@dataclass(frozen=True)
class QueueStatus:
    """Diagnostic view of the access queue."""

    queue_length: int
    processing: bool
