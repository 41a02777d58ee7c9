"""
people_counter_lib - Serial communication core for APC100 people counters.

Frames and parses the counter's ASCII RS485 protocol, serializes all port
access through a FIFO queue, and polls for changes to persist.
"""

from people_counter_lib.config import CounterSettings
from people_counter_lib.errors import (
    InvalidResetScope,
    InvalidResponse,
    PeopleCounterError,
    ResponseTimeout,
    SerialIOError,
)
from people_counter_lib.job_queue import AccessQueue
from people_counter_lib.models import CommFault, PollerState, QueueStatus, Reading, ResetScope
from people_counter_lib.poller import ChangeDrivenPoller
from people_counter_lib.runtime import Collaborators, PeopleCounterRuntime
from people_counter_lib.transport import CounterTransport

__version__ = "0.1.0"

__all__ = [
    "CounterTransport",
    "AccessQueue",
    "ChangeDrivenPoller",
    "PeopleCounterRuntime",
    "Collaborators",
    "CounterSettings",
    "Reading",
    "ResetScope",
    "CommFault",
    "PollerState",
    "QueueStatus",
    "PeopleCounterError",
    "SerialIOError",
    "ResponseTimeout",
    "InvalidResponse",
    "InvalidResetScope",
]
