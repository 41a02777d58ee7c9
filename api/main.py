"""FastAPI REST interface for the people counter communication core.

Single-process, single-counter lifecycle around one PeopleCounterRuntime:
- CounterTransport (serial port, frame codec, simulation)
- AccessQueue (serializes polling and operator commands)
- ChangeDrivenPoller (fixed-cadence polling, change-driven persistence)

Error mapping:
- No reading / failed reset → 503
- Feature disabled → 404
- Bad query parameters → 400
- Other exceptions → 500
"""

import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import FileResponse
from pydantic import BaseModel

from data_store import DeviceErrorLog, DeviceStatusBoard, HistoryStore, LiveStateStore, period_window
from data_store.store import DEFAULT_TIMEZONE, PERIODS
from people_counter_lib import CounterSettings, PeopleCounterRuntime, protocol
from people_counter_lib.collaborators import RuntimeSettings, StaticTenantResolver
from people_counter_lib.poller import reading_fields
from people_counter_lib.runtime import Collaborators
from people_counter_lib.transport import ConnectionFactory

# =============================================================================
# Environment Configuration
# =============================================================================

SETTINGS = CounterSettings.from_env()

API_VERSION = "0.1.0"

logging.basicConfig(
    level=getattr(logging, SETTINGS.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# =============================================================================
# Runtime Singletons (owned by this module, not by the core)
# =============================================================================

_runtime: Optional[PeopleCounterRuntime] = None
_flags: Optional[RuntimeSettings] = None
_live_store: Optional[LiveStateStore] = None
_history_store: Optional[HistoryStore] = None
_status_board: Optional[DeviceStatusBoard] = None
_error_log: Optional[DeviceErrorLog] = None


def build_runtime(
    settings: Optional[CounterSettings] = None,
    connection_factory: Optional[ConnectionFactory] = None,
) -> PeopleCounterRuntime:
    """Create stores, collaborators and the runtime, replacing any previous ones."""
    global _runtime, _flags, _live_store, _history_store, _status_board, _error_log

    settings = settings or SETTINGS
    _flags = RuntimeSettings(enabled=settings.enabled)
    _live_store = LiveStateStore()
    _history_store = HistoryStore()
    _status_board = DeviceStatusBoard()
    _error_log = DeviceErrorLog()

    _runtime = PeopleCounterRuntime(
        settings,
        Collaborators(
            flags=_flags,
            tenants=StaticTenantResolver(),
            live_store=_live_store,
            history_store=_history_store,
            status_reporter=_status_board,
            error_reporter=_error_log,
        ),
        connection_factory=connection_factory,
    )
    return _runtime


def _require_runtime() -> PeopleCounterRuntime:
    if _runtime is None:
        raise HTTPException(status_code=503, detail="People counter runtime not initialized")
    return _runtime


def _require_enabled() -> PeopleCounterRuntime:
    runtime = _require_runtime()
    if _flags is None or not _flags.is_feature_enabled():
        raise HTTPException(status_code=404, detail="People counter is disabled")
    return runtime


def _tenant_id(runtime: PeopleCounterRuntime) -> str:
    try:
        return runtime.collaborators.tenants.get_primary_tenant().id
    except Exception as e:
        logger.warning(f"Tenant lookup failed: {e}")
        return protocol.DEFAULT_CLIENT_ID


def _parse_datetime(value: str, name: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be ISO 8601, got {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="People Counter API",
    description="REST interface for APC100 people counters on RS485",
    version=API_VERSION
)

# =============================================================================
# Request/Response Models
# =============================================================================

class FeatureStateRequest(BaseModel):
    """Request body for POST /system/people-counter."""
    enabled: bool


class FeatureStateResponse(BaseModel):
    """Response for GET/POST /system/people-counter."""
    enabled: bool


class ResetRequest(BaseModel):
    """Request body for POST /people-counter/reset."""
    scope: Literal["current", "in", "out", "all"] = "all"


class StatusResponse(BaseModel):
    """Response for GET /status."""
    enabled: bool
    poller_state: str
    communication_ok: Optional[bool]
    last_entries: Optional[int]
    last_fault: str
    port: str
    port_open: bool
    simulate: bool
    queue_length: int
    processing: bool
    active_errors: List[Dict[str, Any]]


class ReadingResponse(BaseModel):
    """A decoded reading returned by POST /people-counter/query."""
    timestamp: str
    entries: int
    exits: int
    current_count: int
    output1: bool
    output2: bool
    count_enabled: bool
    button_pressed: bool
    sensor_ok: bool
    limit_exceeded: bool
    raw: Optional[str]


class StatsResponse(BaseModel):
    """Response for GET /people-counter/stats."""
    period: str
    start_date: str
    end_date: str
    in_count: int
    out_count: int
    peak_count: int
    avg_count: float
    data_points: int
    raw_data: List[Dict[str, Any]]


# Windows with more samples than this return aggregates only
STATS_RAW_LIMIT = 200

# =============================================================================
# Read-Only Endpoints
# =============================================================================

@app.get("/status", response_model=StatusResponse)
async def get_status():
    """Poller lifecycle, communication health and queue diagnostics."""
    runtime = _require_runtime()
    info = runtime.describe()
    return StatusResponse(
        enabled=_flags.is_feature_enabled() if _flags else False,
        active_errors=_error_log.active() if _error_log else [],
        **info
    )


@app.get("/system/people-counter", response_model=FeatureStateResponse)
async def get_feature_state():
    """Whether people counting is enabled."""
    _require_runtime()
    return FeatureStateResponse(enabled=_flags.is_feature_enabled())


@app.get("/people-counter/live")
async def get_live():
    """Live record of the counter, or {} before the first write."""
    _require_enabled()
    record = _live_store.get(protocol.DEVICE_ID)
    return record if record else {}


@app.get("/people-counter/stats", response_model=StatsResponse)
async def get_stats(
    period: str = Query("day", description="hour, day, week or month"),
    start_date: Optional[str] = Query(None, description="ISO 8601 start (overrides period)"),
    end_date: Optional[str] = Query(None, description="ISO 8601 end (overrides period)"),
):
    """Traffic summary for a period or an explicit window."""
    runtime = _require_enabled()

    if period not in PERIODS:
        raise HTTPException(status_code=400, detail=f"period must be one of {PERIODS}")

    if start_date and end_date:
        start = _parse_datetime(start_date, "start_date")
        end = _parse_datetime(end_date, "end_date")
    else:
        start, end = period_window(period, datetime.now(timezone.utc))

    client_id = _tenant_id(runtime)
    summary = _history_store.summarize(client_id, start, end)

    raw_data: List[Dict[str, Any]] = []
    if summary["data_points"] <= STATS_RAW_LIMIT:
        raw_data = [
            {key: row[key] for key in ("timestamp", "entries", "exits", "current_count")}
            for row in _history_store.query_range(client_id, start, end, limit=STATS_RAW_LIMIT)
        ]

    return StatsResponse(
        period=period,
        start_date=start.isoformat(),
        end_date=end.isoformat(),
        raw_data=raw_data,
        **summary
    )


@app.get("/people-counter/hourly-stats")
async def get_hourly_stats(
    day: str = Query(..., alias="date", description="Local date YYYY-MM-DD"),
    client_id: Optional[str] = Query(None, description="Defaults to the primary tenant"),
):
    """24 hourly buckets for one local calendar day."""
    runtime = _require_enabled()
    try:
        parsed_day = date.fromisoformat(day)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"date must be YYYY-MM-DD, got {day!r}")

    return _history_store.hourly_stats(
        client_id or _tenant_id(runtime), parsed_day, tz=DEFAULT_TIMEZONE
    )


@app.get("/people-counter/raw")
async def get_raw(
    start_date: str = Query(..., description="ISO 8601 start"),
    end_date: str = Query(..., description="ISO 8601 end"),
    limit: int = Query(1000, ge=1, le=10000),
):
    """Historical samples in a window, oldest first."""
    runtime = _require_enabled()
    start = _parse_datetime(start_date, "start_date")
    end = _parse_datetime(end_date, "end_date")

    rows = _history_store.query_range(_tenant_id(runtime), start, end, limit=limit)
    return {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "count": len(rows),
        "data": rows,
    }


@app.get("/export/csv")
async def export_csv():
    """Export the historical samples to a CSV download."""
    _require_runtime()
    if len(_history_store) == 0:
        raise HTTPException(status_code=400, detail="No data to export")

    logger.info("Exporting history to CSV...")
    csv_path = _history_store.export_csv()
    return FileResponse(path=csv_path, media_type="text/csv", filename=Path(csv_path).name)


# =============================================================================
# Control Endpoints
# =============================================================================

@app.post("/system/people-counter", response_model=FeatureStateResponse)
async def set_feature_state(req: FeatureStateRequest):
    """Enable or disable people counting. Takes effect on the next poll tick."""
    _require_runtime()
    _flags.set_feature_enabled(req.enabled)
    return FeatureStateResponse(enabled=_flags.is_feature_enabled())


@app.post("/poller/start")
async def start_poller():
    """Start the poller (no-op if already running)."""
    runtime = _require_runtime()
    await runtime.poller.start()
    return {"status": runtime.poller.state.value}


@app.post("/poller/stop")
async def stop_poller():
    """Stop the poller and release the serial port."""
    runtime = _require_runtime()
    await runtime.poller.stop()
    return {"status": runtime.poller.state.value}


@app.post("/people-counter/query", response_model=ReadingResponse)
async def query_now():
    """Read the counter immediately, queued behind any in-flight poll."""
    runtime = _require_enabled()
    reading = await runtime.queue.submit_query()
    if reading is None:
        raise HTTPException(
            status_code=503,
            detail=f"No reading from people counter ({runtime.transport.last_fault.value})"
        )
    return ReadingResponse(timestamp=reading.ts.isoformat(), raw=reading.raw, **reading_fields(reading))


@app.post("/people-counter/reset")
async def reset_counters(req: Optional[ResetRequest] = None):
    """Reset counters on the device ("current", "in", "out" or "all")."""
    runtime = _require_enabled()
    scope = req.scope if req else "all"

    ok = await runtime.queue.submit_reset(scope)

    if not ok:
        raise HTTPException(
            status_code=503,
            detail=f"Reset ({scope}) failed ({runtime.transport.last_fault.value})"
        )
    logger.info(f"Operator reset ({scope}) sent")
    return {"status": "reset", "scope": scope}


# =============================================================================
# Health Check
# =============================================================================

@app.get("/")
async def root():
    """Service info."""
    return {
        "service": "People Counter API",
        "version": API_VERSION,
        "status": "online"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "service": "People Counter API",
        "version": API_VERSION,
        "status": "online"
    }


# =============================================================================
# Startup/Shutdown Events
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Build the runtime (unless one was injected) and optionally start polling."""
    runtime = _runtime or build_runtime(SETTINGS)

    logger.info("=" * 60)
    logger.info("People Counter API started")
    logger.info(f"Version: {API_VERSION}")
    logger.info(f"Serial Port: {runtime.settings.port} @ {runtime.settings.baud}")
    logger.info(f"Poll Interval: {runtime.settings.poll_interval_s * 1000:.0f} ms")
    logger.info(f"Response Timeout: {runtime.settings.response_timeout_s * 1000:.0f} ms")
    logger.info(f"Simulation: {runtime.settings.simulate}")
    logger.info(f"Enabled: {_flags.is_feature_enabled()}")
    logger.info(f"Log Level: {SETTINGS.log_level}")
    logger.info("=" * 60)

    if runtime.settings.autostart:
        await runtime.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop polling and close the port."""
    logger.info("Shutting down People Counter API...")
    if _runtime is not None:
        try:
            await _runtime.shutdown()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")
    logger.info("Shutdown complete")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=SETTINGS.api_host, port=SETTINGS.api_port)
