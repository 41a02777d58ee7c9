"""Schema normalization for people counter historical samples.

Keeps the history DataFrame's columns and dtypes identical no matter which
caller produced the record, so range queries and aggregations can rely on them.
"""

from datetime import datetime
from typing import Any, Dict, Mapping

import pandas as pd

# DataFrame schema: column names and their dtypes
SCHEMA = {
    "timestamp": "datetime64[ns, UTC]",  # Capture time, always UTC
    "client_id": "object",
    "device_id": "object",
    "unit_id": "object",
    "entries": "int64",  # Cumulative entries
    "exits": "int64",  # Cumulative exits
    "current_count": "int64",  # Occupancy
    "output1": "bool",
    "output2": "bool",
    "count_enabled": "bool",
    "button_pressed": "bool",
    "sensor_ok": "bool",
    "limit_exceeded": "bool",
}

COLUMNS = list(SCHEMA.keys())

REQUIRED_FIELDS = ("timestamp", "client_id", "entries", "exits", "current_count")


def to_utc(ts: Any) -> pd.Timestamp:
    """Convert a datetime/ISO string to a UTC pandas Timestamp (naive input is taken as UTC)."""
    stamp = pd.Timestamp(ts)
    if stamp.tzinfo is None:
        return stamp.tz_localize("UTC")
    return stamp.tz_convert("UTC")


def record_to_row(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert a historical record into a row with every SCHEMA column.

    Args:
        record: Mapping produced by the poller (see ``poller.history_record``)

    Returns:
        Dictionary with all SCHEMA keys, ready for DataFrame append

    Raises:
        ValueError: If a required field is missing
    """
    missing = [name for name in REQUIRED_FIELDS if record.get(name) is None]
    if missing:
        raise ValueError(f"History record missing required fields {missing}: {dict(record)}")

    return {
        "timestamp": to_utc(record["timestamp"]),
        "client_id": str(record["client_id"]),
        "device_id": str(record.get("device_id", "")),
        "unit_id": str(record.get("unit_id", "")),
        "entries": int(record["entries"]),
        "exits": int(record["exits"]),
        "current_count": int(record["current_count"]),
        "output1": bool(record.get("output1", False)),
        "output2": bool(record.get("output2", False)),
        "count_enabled": bool(record.get("count_enabled", False)),
        "button_pressed": bool(record.get("button_pressed", False)),
        "sensor_ok": bool(record.get("sensor_ok", False)),
        "limit_exceeded": bool(record.get("limit_exceeded", False)),
    }


def empty_frame() -> pd.DataFrame:
    """Empty DataFrame with SCHEMA columns and dtypes."""
    return pd.DataFrame({name: pd.Series(dtype=dtype) for name, dtype in SCHEMA.items()})


def row_to_json(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Make a DataFrame row JSON-friendly (ISO timestamp, native ints/bools)."""
    out: Dict[str, Any] = {}
    for name in COLUMNS:
        value = row[name]
        if name == "timestamp":
            value = value.isoformat() if isinstance(value, (pd.Timestamp, datetime)) else str(value)
        elif SCHEMA[name] == "int64":
            value = int(value)
        elif SCHEMA[name] == "bool":
            value = bool(value)
        out[name] = value
    return out
