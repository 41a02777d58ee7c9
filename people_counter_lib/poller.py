"""Change-driven poller: queries the counter on a fixed cadence and persists only changes.

A tick persists when the cumulative entries counter differs from the value
seen on the previous successful tick (or when there is no previous value, as
after a restart). A quiet sensor therefore costs one query per tick and no
writes.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from people_counter_lib import protocol
from people_counter_lib.collaborators import (
    CommunicationReporter,
    FeatureFlagSource,
    HistoryStore,
    LiveStateStore,
    NullReporter,
    TenantResolver,
)
from people_counter_lib.job_queue import AccessQueue
from people_counter_lib.models import PollerState, Reading

logger = logging.getLogger(__name__)


def reading_fields(reading: Reading) -> Dict[str, Any]:
    """Counter values of a reading, without timestamp or raw text."""
    return {
        "current_count": reading.current_count,
        "entries": reading.entries,
        "exits": reading.exits,
        "output1": reading.output1,
        "output2": reading.output2,
        "count_enabled": reading.count_enabled,
        "button_pressed": reading.button_pressed,
        "sensor_ok": reading.sensor_ok,
        "limit_exceeded": reading.limit_exceeded,
    }


def live_record_fields(client_id: str, reading: Reading) -> Dict[str, Any]:
    """Fields written to the device's live record."""
    unit_data = reading_fields(reading)
    unit_data["timestamp"] = reading.ts.isoformat()
    return {
        "client_id": client_id,
        "type": protocol.DEVICE_TYPE,
        "units": [{"unit_id": protocol.UNIT_ID, "data": unit_data}],
    }


def history_record(client_id: str, reading: Reading) -> Dict[str, Any]:
    """Row appended to the historical store."""
    record: Dict[str, Any] = {
        "client_id": client_id,
        "device_id": protocol.DEVICE_ID,
        "unit_id": protocol.UNIT_ID,
        "timestamp": reading.ts,
    }
    record.update(reading_fields(reading))
    return record


class ChangeDrivenPoller:
    """Drives an AccessQueue at a fixed interval and persists counter changes.

    Lifecycle: STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED. Ticks never overlap:
    the next wait starts only after the previous tick has finished.
    """

    def __init__(
        self,
        queue: AccessQueue,
        flags: FeatureFlagSource,
        tenants: TenantResolver,
        live_store: LiveStateStore,
        history_store: HistoryStore,
        status_reporter: Optional[CommunicationReporter] = None,
        error_reporter: Optional[CommunicationReporter] = None,
        interval_s: float = protocol.POLL_INTERVAL,
        device_id: str = protocol.DEVICE_ID,
        unit_id: str = protocol.UNIT_ID,
    ) -> None:
        """Initialize poller (does not start it).

        Args:
            queue: Access queue owning the transport
            flags: Feature flag source, consulted at start and on every tick
            tenants: Resolver for the owning client id
            live_store: Store receiving the per-device live record
            history_store: Append-only store receiving a sample per change
            status_reporter: Device status collaborator. Defaults to a no-op.
            error_reporter: Error log collaborator. Defaults to a no-op.
            interval_s: Seconds between ticks. Default 1.0.
            device_id: Device key for records and health reports
            unit_id: Unit key for records and health reports
        """
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s}")

        self._queue = queue
        self._flags = flags
        self._tenants = tenants
        self._live_store = live_store
        self._history_store = history_store
        self._status_reporter = status_reporter or NullReporter()
        self._error_reporter = error_reporter or NullReporter()
        self._interval = interval_s
        self._device_id = device_id
        self._unit_id = unit_id

        self._state = PollerState.STOPPED
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._stopping: Optional[asyncio.Task] = None

        self._last_entries: Optional[int] = None
        self._communication_ok: Optional[bool] = None

        # Last health state each reporter accepted; retried until its call succeeds
        self._reporters: List[CommunicationReporter] = [self._status_reporter, self._error_reporter]
        self._reported: List[Optional[bool]] = [None] * len(self._reporters)

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state in (PollerState.STARTING, PollerState.RUNNING)

    @property
    def interval_s(self) -> float:
        return self._interval

    @property
    def last_entries(self) -> Optional[int]:
        """Cumulative entries seen on the last successful tick (None after stop)."""
        return self._last_entries

    @property
    def communication_ok(self) -> Optional[bool]:
        """Health of the last exchange; None until the first tick completes."""
        return self._communication_ok

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> None:
        """Seed the live record (if enabled) and begin ticking. No-op if running.

        If a stop is in progress, waits for it to complete and then starts.
        """
        if self._stopping is not None:
            await asyncio.wait({self._stopping})

        if self.running:
            logger.warning("Poller already running")
            return

        self._state = PollerState.STARTING
        logger.info(f"Starting poller ({self._interval * 1000:.0f} ms interval)")

        if self._is_enabled():
            # Give consumers a record to show before the first real sample
            tenant_id = self._resolve_tenant_id()
            self._upsert_live(tenant_id, Reading.zeroed())

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event), name="people-counter-poller")
        self._state = PollerState.RUNNING

    async def stop(self) -> None:
        """Stop ticking, release the port and forget the last observed count.

        A tick already in progress is allowed to finish. No-op if stopped.
        Concurrent callers all wait for the same shutdown.
        """
        if self._stopping is None:
            if not self.running:
                return
            self._stopping = asyncio.create_task(self._shutdown(), name="people-counter-poller-stop")
        await asyncio.shield(self._stopping)

    async def _shutdown(self) -> None:
        self._state = PollerState.STOPPING
        logger.info("Stopping poller...")
        try:
            if self._stop_event is not None:
                self._stop_event.set()
            if self._task is not None:
                await self._task
            self._task = None
            self._stop_event = None

            await self._queue.release()
        finally:
            # Cleared after the loop exits so an in-flight tick cannot repopulate it
            self._last_entries = None
            self._communication_ok = None
            self._reported = [None] * len(self._reporters)
            self._state = PollerState.STOPPED
            self._stopping = None
        logger.info("Poller stopped")

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Unexpected error in poll tick: {e}", exc_info=True)

    # ========================================================================
    # Tick
    # ========================================================================

    async def poll_once(self) -> bool:
        """Run one tick.

        Returns:
            True if a change was persisted, False otherwise
        """
        if not self._is_enabled():
            # Free the port while the feature is off
            if self._queue.transport.is_open:
                await self._queue.release()
            return False

        try:
            reading = await self._queue.submit_query()
        except Exception as e:
            logger.warning(f"Query job failed: {e}")
            reading = None

        if reading is None:
            self._mark_communication(False)
            return False

        self._mark_communication(True)

        previous = self._last_entries
        if previous is not None and reading.entries == previous:
            return False
        self._last_entries = reading.entries

        logger.debug(f"Entries changed {previous} -> {reading.entries}")
        tenant_id = self._resolve_tenant_id()
        self._upsert_live(tenant_id, reading)
        self._append_history(tenant_id, reading)
        return True

    # ========================================================================
    # Collaborator calls (best-effort)
    # ========================================================================

    def _is_enabled(self) -> bool:
        try:
            return bool(self._flags.is_feature_enabled())
        except Exception as e:
            logger.warning(f"Could not read feature flag, treating as disabled: {e}")
            return False

    def _resolve_tenant_id(self) -> str:
        try:
            tenant = self._tenants.get_primary_tenant()
            if tenant is not None and tenant.id:
                return tenant.id
        except Exception as e:
            logger.warning(f"Tenant lookup failed, using {protocol.DEFAULT_CLIENT_ID}: {e}")
        return protocol.DEFAULT_CLIENT_ID

    def _upsert_live(self, tenant_id: str, reading: Reading) -> None:
        try:
            self._live_store.upsert(self._device_id, live_record_fields(tenant_id, reading), reading.ts)
        except Exception as e:
            logger.error(f"Live record upsert failed: {e}")

    def _append_history(self, tenant_id: str, reading: Reading) -> None:
        try:
            self._history_store.append(history_record(tenant_id, reading))
        except Exception as e:
            logger.error(f"History append failed: {e}")

    def _mark_communication(self, ok: bool) -> None:
        if self._communication_ok is not ok:
            self._communication_ok = ok
            if ok:
                logger.info(f"Communication with {self._device_id}/{self._unit_id} restored")
            else:
                logger.warning(
                    f"Communication error on {self._device_id}/{self._unit_id} "
                    f"({self._queue.transport.last_fault.value})"
                )

        for index, reporter in enumerate(self._reporters):
            if self._reported[index] is ok:
                continue
            try:
                if ok:
                    reporter.clear_communication_error(self._device_id, self._unit_id)
                else:
                    reporter.set_communication_error(self._device_id, self._unit_id)
            except Exception as e:
                logger.error(f"Health reporter {type(reporter).__name__} failed, retrying next tick: {e}")
                continue
            self._reported[index] = ok
