"""Tests for the change-driven poller."""

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from people_counter_lib import protocol
from people_counter_lib.collaborators import RuntimeSettings, StaticTenantResolver, Tenant
from people_counter_lib.models import CommFault, PollerState, Reading
from people_counter_lib.poller import ChangeDrivenPoller


def reading(entries: int, exits: int = 0) -> Reading:
    return Reading(
        ts=datetime.now(timezone.utc),
        entries=entries,
        exits=exits,
        current_count=entries - exits,
        count_enabled=True,
        sensor_ok=True,
    )


class StubQueue:
    """Stands in for AccessQueue, replaying scripted query results."""

    def __init__(self, results=None, delay: float = 0.0, release_delay: float = 0.0) -> None:
        self.results = list(results or [])
        self.delay = delay
        self.release_delay = release_delay
        self.queries = 0
        self.releases = 0
        self.transport = SimpleNamespace(is_open=True, last_fault=CommFault.TIMEOUT)

    async def submit_query(self):
        self.queries += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.results.pop(0) if self.results else None
        if isinstance(item, Exception):
            raise item
        return item

    async def release(self) -> None:
        self.releases += 1
        if self.release_delay:
            await asyncio.sleep(self.release_delay)
        self.transport.is_open = False


def make_poller(queue: StubQueue, enabled: bool = True, **kwargs) -> ChangeDrivenPoller:
    kwargs.setdefault("flags", RuntimeSettings(enabled=enabled))
    kwargs.setdefault("tenants", StaticTenantResolver("c0202"))
    kwargs.setdefault("live_store", MagicMock())
    kwargs.setdefault("history_store", MagicMock())
    kwargs.setdefault("status_reporter", MagicMock())
    kwargs.setdefault("error_reporter", MagicMock())
    kwargs.setdefault("interval_s", 10.0)
    return ChangeDrivenPoller(queue, **kwargs)


@pytest.mark.asyncio
async def test_only_entry_changes_are_persisted() -> None:
    """Test that unchanged entries produce no writes."""
    queue = StubQueue([reading(5), reading(5), reading(6), reading(6, exits=1)])
    poller = make_poller(queue)

    results = [await poller.poll_once() for _ in range(4)]

    assert results == [True, False, True, False]
    assert poller._history_store.append.call_count == 2
    assert poller._live_store.upsert.call_count == 2
    assert poller.last_entries == 6


@pytest.mark.asyncio
async def test_persisted_records_carry_tenant_and_keys() -> None:
    """Test the shape of live and history writes."""
    queue = StubQueue([reading(3, exits=1)])
    poller = make_poller(queue)

    await poller.poll_once()

    device_key, fields, timestamp = poller._live_store.upsert.call_args.args
    assert device_key == protocol.DEVICE_ID
    assert fields["client_id"] == "c0202"
    assert fields["type"] == "people_counter"
    unit = fields["units"][0]
    assert unit["unit_id"] == protocol.UNIT_ID
    assert unit["data"]["entries"] == 3
    assert unit["data"]["current_count"] == 2
    assert isinstance(timestamp, datetime)

    record = poller._history_store.append.call_args.args[0]
    assert record["client_id"] == "c0202"
    assert record["device_id"] == protocol.DEVICE_ID
    assert record["unit_id"] == protocol.UNIT_ID
    assert record["exits"] == 1
    assert record["sensor_ok"] is True


@pytest.mark.asyncio
async def test_first_tick_after_restart_persists() -> None:
    """Test that stop forgets the last count so the next value is written."""
    queue = StubQueue([reading(9)])
    poller = make_poller(queue)
    await poller.poll_once()

    await poller.start()
    await poller.stop()
    assert poller.last_entries is None

    queue.results = [reading(9)]
    assert await poller.poll_once() is True
    assert poller._history_store.append.call_count == 2


@pytest.mark.asyncio
async def test_disabled_tick_does_nothing() -> None:
    """Test that a disabled feature skips the query and all writes."""
    queue = StubQueue([reading(1)])
    queue.transport.is_open = False
    poller = make_poller(queue, enabled=False)

    assert await poller.poll_once() is False

    assert queue.queries == 0
    assert queue.releases == 0
    poller._live_store.upsert.assert_not_called()
    poller._history_store.append.assert_not_called()
    poller._status_reporter.set_communication_error.assert_not_called()


@pytest.mark.asyncio
async def test_disabled_tick_releases_open_port() -> None:
    """Test that disabling the feature frees the serial port."""
    queue = StubQueue()
    flags = RuntimeSettings(enabled=False)
    poller = make_poller(queue, flags=flags)

    await poller.poll_once()

    assert queue.releases == 1
    assert queue.queries == 0


@pytest.mark.asyncio
async def test_failing_flag_source_counts_as_disabled() -> None:
    """Test that an unreadable flag skips the tick instead of raising."""
    flags = MagicMock()
    flags.is_feature_enabled.side_effect = RuntimeError("settings db down")
    queue = StubQueue([reading(1)])
    queue.transport.is_open = False
    poller = make_poller(queue, flags=flags)

    assert await poller.poll_once() is False
    assert queue.queries == 0


@pytest.mark.asyncio
async def test_start_seeds_zeroed_live_record() -> None:
    """Test bootstrap upsert on start when enabled."""
    poller = make_poller(StubQueue())

    await poller.start()
    try:
        assert poller.state is PollerState.RUNNING
        poller._live_store.upsert.assert_called_once()
        fields = poller._live_store.upsert.call_args.args[1]
        data = fields["units"][0]["data"]
        assert (data["entries"], data["exits"], data["current_count"]) == (0, 0, 0)
        poller._history_store.append.assert_not_called()
    finally:
        await poller.stop()


@pytest.mark.asyncio
async def test_start_when_disabled_skips_seed() -> None:
    """Test that a disabled feature starts the loop without writing."""
    poller = make_poller(StubQueue(), enabled=False)

    await poller.start()
    assert poller.running
    poller._live_store.upsert.assert_not_called()
    await poller.stop()


@pytest.mark.asyncio
async def test_double_start_is_noop() -> None:
    """Test that a second start neither reseeds nor spawns another loop."""
    poller = make_poller(StubQueue())

    await poller.start()
    task = poller._task
    await poller.start()

    assert poller._task is task
    assert poller._live_store.upsert.call_count == 1
    await poller.stop()


@pytest.mark.asyncio
async def test_stop_when_stopped_is_noop() -> None:
    """Test that stopping an idle poller does not release the port."""
    queue = StubQueue()
    poller = make_poller(queue)

    await poller.stop()

    assert queue.releases == 0
    assert poller.state is PollerState.STOPPED


@pytest.mark.asyncio
async def test_health_reported_on_transitions_only() -> None:
    """Test that repeated failures or successes are coalesced."""
    queue = StubQueue([None, None, reading(1), reading(2), None])
    poller = make_poller(queue)
    status = poller._status_reporter
    errors = poller._error_reporter

    for _ in range(5):
        await poller.poll_once()

    assert status.set_communication_error.call_count == 2
    assert status.clear_communication_error.call_count == 1
    assert errors.set_communication_error.call_count == 2
    assert errors.clear_communication_error.call_count == 1
    status.set_communication_error.assert_called_with(protocol.DEVICE_ID, protocol.UNIT_ID)
    assert poller.communication_ok is False


@pytest.mark.asyncio
async def test_first_success_reports_clear() -> None:
    """Test that the first good tick announces healthy communication."""
    poller = make_poller(StubQueue([reading(1), reading(1)]))

    await poller.poll_once()
    await poller.poll_once()

    poller._status_reporter.clear_communication_error.assert_called_once()
    assert poller.communication_ok is True


@pytest.mark.asyncio
async def test_reporter_failure_is_swallowed() -> None:
    """Test that a raising reporter does not stop the other or the tick."""
    status = MagicMock()
    status.set_communication_error.side_effect = RuntimeError("status svc down")
    poller = make_poller(StubQueue([None]), status_reporter=status)

    assert await poller.poll_once() is False
    poller._error_reporter.set_communication_error.assert_called_once()


@pytest.mark.asyncio
async def test_query_exception_is_communication_error() -> None:
    """Test that a job raising is treated like a missing reply."""
    poller = make_poller(StubQueue([RuntimeError("transport exploded")]))

    assert await poller.poll_once() is False
    poller._status_reporter.set_communication_error.assert_called_once()


@pytest.mark.asyncio
async def test_store_failures_are_independent() -> None:
    """Test that a failing live upsert does not block the history append."""
    live = MagicMock()
    live.upsert.side_effect = RuntimeError("live store down")
    history = MagicMock()
    poller = make_poller(StubQueue([reading(1), reading(2)]), live_store=live, history_store=history)

    assert await poller.poll_once() is True
    history.append.assert_called_once()

    live.upsert.side_effect = None
    history.append.side_effect = RuntimeError("history store down")
    assert await poller.poll_once() is True
    assert live.upsert.call_count == 2
    assert poller.last_entries == 2


@pytest.mark.asyncio
async def test_tenant_lookup_falls_back_to_default() -> None:
    """Test the default client id when the resolver fails or has no id."""
    tenants = MagicMock()
    tenants.get_primary_tenant.side_effect = RuntimeError("no tenant table")
    poller = make_poller(StubQueue([reading(1), reading(2)]), tenants=tenants)

    await poller.poll_once()
    assert poller._history_store.append.call_args.args[0]["client_id"] == protocol.DEFAULT_CLIENT_ID

    tenants.get_primary_tenant.side_effect = None
    tenants.get_primary_tenant.return_value = Tenant(id="")
    await poller.poll_once()
    assert poller._history_store.append.call_args.args[0]["client_id"] == protocol.DEFAULT_CLIENT_ID


@pytest.mark.asyncio
async def test_loop_ticks_and_stop_releases_port() -> None:
    """Test the timed loop end to end."""
    queue = StubQueue([reading(n) for n in range(1, 50)])
    poller = make_poller(queue, interval_s=0.02)

    await poller.start()
    await asyncio.sleep(0.15)
    await poller.stop()

    assert queue.queries >= 2
    assert queue.releases == 1
    assert poller.state is PollerState.STOPPED
    assert poller.communication_ok is None

    count = queue.queries
    await asyncio.sleep(0.05)
    assert queue.queries == count


@pytest.mark.asyncio
async def test_stop_waits_for_inflight_tick() -> None:
    """Test that a tick already querying finishes before stop returns."""
    queue = StubQueue([reading(4)], delay=0.1)
    poller = make_poller(queue, interval_s=0.01)

    await poller.start()
    await asyncio.sleep(0.03)
    assert queue.queries == 1

    await poller.stop()

    poller._history_store.append.assert_called_once()
    assert poller.last_entries is None
    assert queue.releases == 1


def test_interval_must_be_positive() -> None:
    """Test constructor validation of the tick interval."""
    with pytest.raises(ValueError):
        make_poller(StubQueue(), interval_s=0)


@pytest.mark.asyncio
async def test_concurrent_stops_share_one_shutdown() -> None:
    """Test that overlapping stop calls wait for the same shutdown."""
    queue = StubQueue(release_delay=0.05)
    poller = make_poller(queue)
    await poller.start()

    first = asyncio.create_task(poller.stop())
    await asyncio.sleep(0.01)
    assert poller.state is PollerState.STOPPING

    await asyncio.gather(first, poller.stop())

    assert poller.state is PollerState.STOPPED
    assert queue.releases == 1


@pytest.mark.asyncio
async def test_start_during_stop_restarts_after_shutdown() -> None:
    """Test that a start issued while stopping is not lost."""
    queue = StubQueue(release_delay=0.05)
    poller = make_poller(queue)
    await poller.start()

    stopping = asyncio.create_task(poller.stop())
    await asyncio.sleep(0.01)
    await poller.start()
    await stopping

    assert poller.state is PollerState.RUNNING
    assert poller._live_store.upsert.call_count == 2
    await poller.stop()
    assert queue.releases == 2


@pytest.mark.asyncio
async def test_failed_health_report_is_retried() -> None:
    """Test that a reporter that failed is called again on the next tick."""
    status = MagicMock()
    status.set_communication_error.side_effect = [RuntimeError("status svc down"), None, None]
    poller = make_poller(StubQueue([None, None, None]), status_reporter=status)

    for _ in range(3):
        await poller.poll_once()

    # First call failed, second succeeded, third tick coalesced
    assert status.set_communication_error.call_count == 2
    poller._error_reporter.set_communication_error.assert_called_once()


@pytest.mark.asyncio
async def test_failed_clear_is_retried_after_recovery() -> None:
    """Test that recovery keeps being reported until the reporter accepts it."""
    errors = MagicMock()
    errors.clear_communication_error.side_effect = [RuntimeError("error log down"), None]
    poller = make_poller(StubQueue([None, reading(1), reading(1), reading(1)]), error_reporter=errors)

    for _ in range(4):
        await poller.poll_once()

    assert errors.clear_communication_error.call_count == 2
    poller._status_reporter.clear_communication_error.assert_called_once()
