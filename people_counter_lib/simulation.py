"""In-memory stand-in for the people counter, used when no device is attached."""

import logging
import random
from datetime import datetime, timezone
from typing import Optional

from people_counter_lib import parsing
from people_counter_lib.models import Reading, ResetScope

logger = logging.getLogger(__name__)

ENTRY_PROBABILITY = 0.3
EXIT_PROBABILITY = 0.3


class CounterSimulator:
    """Random-walk model of entries, exits and occupancy.

    Each step has a 30% chance of one person entering, a 30% chance of one
    person leaving (only when someone is inside), and otherwise leaves the
    counters untouched.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()
        self.entries = 0
        self.exits = 0
        self.current_count = 0

    def step(self) -> None:
        """Advance the walk by one event (or none)."""
        roll = self._rng.random()
        if roll < ENTRY_PROBABILITY:
            self.entries += 1
            self.current_count += 1
        elif roll < ENTRY_PROBABILITY + EXIT_PROBABILITY and self.current_count > 0:
            self.exits += 1
            self.current_count -= 1

    def frame(self) -> str:
        """Current counters encoded as a device status frame."""
        snapshot = Reading(
            ts=datetime.now(timezone.utc),
            entries=self.entries,
            exits=self.exits,
            current_count=self.current_count,
            count_enabled=True,
            sensor_ok=True,
        )
        return parsing.format_response(snapshot)

    def next_reading(self) -> Reading:
        """Step the walk and return the result decoded from a synthetic frame."""
        self.step()
        raw = self.frame()
        logger.debug(f"Simulated response: {raw!r}")
        return parsing.parse_response(raw)

    def reset(self, scope: ResetScope) -> None:
        """Clear simulated counters the way the device would."""
        if scope in (ResetScope.CURRENT, ResetScope.ALL):
            self.current_count = 0
        if scope in (ResetScope.ENTRIES, ResetScope.ALL):
            self.entries = 0
        if scope in (ResetScope.EXITS, ResetScope.ALL):
            self.exits = 0
        logger.info(f"Simulated reset ({scope.value})")
