"""Thread-safe in-process stores for people counter state.

This module provides:
- LiveStateStore: one live record per device, upserted on every change
- HistoryStore: append-only pandas DataFrame of historical samples with
  range queries, aggregate statistics, hourly buckets and CSV export

Design notes:
- The poller only writes; the REST layer only reads. Both stores guard their
  state with an RLock so readers always see a consistent snapshot.
- Retention is not enforced here. ``HistoryStore.delete_before`` is the
  primitive an external retention job calls.
"""

import copy
import logging
from datetime import date, datetime, time, timedelta
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo

import pandas as pd

from data_store.schemas import COLUMNS, SCHEMA, empty_frame, record_to_row, row_to_json, to_utc

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Seoul"


class LiveStateStore:
    """Latest known state per device key.

    ``upsert`` merges fields into the device's single record; calling it any
    number of times never creates a second record for the same key.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._records: Dict[str, Dict[str, Any]] = {}

    def upsert(self, device_key: str, fields: Mapping[str, Any], timestamp: datetime) -> None:
        """Create or update the record for device_key.

        Args:
            device_key: Fixed device identifier (e.g. "d082")
            fields: Fields to set on the record
            timestamp: Update time, stored as ISO 8601 in "updated_at"
        """
        with self._lock:
            record = self._records.get(device_key, {"device_id": device_key})
            record.update(copy.deepcopy(dict(fields)))
            record["updated_at"] = timestamp.isoformat()
            self._records[device_key] = record
            logger.debug(f"Live record {device_key} updated at {record['updated_at']}")

    def get(self, device_key: str) -> Optional[Dict[str, Any]]:
        """Copy of the device's record, or None if never written."""
        with self._lock:
            record = self._records.get(device_key)
            return copy.deepcopy(record) if record is not None else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class HistoryStore:
    """Append-only DataFrame of historical samples.

    Rows are normalized through ``record_to_row`` so every column in SCHEMA is
    present with a stable dtype.
    """

    def __init__(self, max_rows: int = 500000) -> None:
        """Initialize empty store.

        Args:
            max_rows: Maximum rows kept in memory; oldest rows are trimmed first.
        """
        if max_rows <= 0:
            raise ValueError(f"max_rows must be positive, got {max_rows}")

        self._lock = RLock()
        self._df = empty_frame()
        self._max_rows = max_rows

    def append(self, record: Mapping[str, Any]) -> None:
        """Append one historical sample.

        Raises:
            ValueError: If the record lacks required fields
        """
        row = record_to_row(record)
        new_df = pd.DataFrame([row], columns=COLUMNS).astype(SCHEMA)

        with self._lock:
            if self._df.empty:
                self._df = new_df
            else:
                self._df = pd.concat([self._df, new_df], ignore_index=True)

            if len(self._df) > self._max_rows:
                excess = len(self._df) - self._max_rows
                self._df = self._df.iloc[excess:].reset_index(drop=True)
                logger.debug(f"Trimmed {excess} oldest rows, now {len(self._df)} rows")

    def get_dataframe(self) -> pd.DataFrame:
        """Copy of the entire DataFrame."""
        with self._lock:
            return self._df.copy()

    def __len__(self) -> int:
        with self._lock:
            return len(self._df)

    # ========================================================================
    # Queries
    # ========================================================================

    def _window(self, client_id: str, start: Any, end: Any, end_inclusive: bool = True) -> pd.DataFrame:
        start_ts = to_utc(start)
        end_ts = to_utc(end)
        with self._lock:
            df = self._df
            upper = df["timestamp"] <= end_ts if end_inclusive else df["timestamp"] < end_ts
            mask = (df["client_id"] == client_id) & (df["timestamp"] >= start_ts) & upper
            return df[mask].sort_values("timestamp", kind="stable").reset_index(drop=True)

    def query_range(
        self, client_id: str, start: Any, end: Any, limit: int = 1000
    ) -> List[Dict[str, Any]]:
        """Samples for a client between start and end (inclusive), oldest first.

        Args:
            client_id: Owning client
            start: Window start (datetime or ISO string; naive means UTC)
            end: Window end
            limit: Maximum number of rows returned

        Returns:
            List of JSON-friendly row dicts
        """
        window = self._window(client_id, start, end).head(max(limit, 0))
        return [row_to_json(row) for row in window.to_dict(orient="records")]

    def summarize(self, client_id: str, start: Any, end: Any) -> Dict[str, Any]:
        """Aggregate traffic for a client over a time window.

        Entry and exit counts are the spread (max - min) of the cumulative
        counters inside the window, so they are only meaningful when no
        counter reset happened inside it.

        Returns:
            Dictionary with keys in_count, out_count, peak_count, avg_count,
            data_points
        """
        return _aggregate(self._window(client_id, start, end))

    def hourly_stats(
        self, client_id: str, day: date, tz: str = DEFAULT_TIMEZONE
    ) -> Dict[str, Any]:
        """Split one local calendar day into 24 hourly buckets.

        Args:
            client_id: Owning client
            day: Local calendar date
            tz: IANA timezone name the day is interpreted in

        Returns:
            {"date": "YYYY-MM-DD", "timezone": tz, "buckets": [...]} where each
            bucket has start, end and the same metrics as ``summarize``
        """
        zone = ZoneInfo(tz)
        day_start = datetime.combine(day, time(0), tzinfo=zone)
        day_end = day_start + timedelta(days=1)

        window = self._window(client_id, day_start, day_end, end_inclusive=False)
        local_hours = window["timestamp"].dt.tz_convert(tz).dt.hour

        buckets = []
        for hour in range(24):
            bucket_start = day_start + timedelta(hours=hour)
            bucket = _aggregate(window[local_hours == hour])
            bucket["start"] = bucket_start.isoformat()
            bucket["end"] = (bucket_start + timedelta(hours=1)).isoformat()
            buckets.append(bucket)

        return {"date": day.isoformat(), "timezone": tz, "buckets": buckets}

    # ========================================================================
    # Maintenance
    # ========================================================================

    def delete_before(self, cutoff: Any) -> int:
        """Remove samples older than cutoff.

        Returns:
            Number of rows removed
        """
        cutoff_ts = to_utc(cutoff)
        with self._lock:
            keep = self._df["timestamp"] >= cutoff_ts
            removed = int((~keep).sum())
            if removed:
                self._df = self._df[keep].reset_index(drop=True)
                logger.info(f"Deleted {removed} samples older than {cutoff_ts.isoformat()}")
            return removed

    def export_csv(self, path: Optional[str] = None) -> str:
        """Export DataFrame to CSV file.

        Auto-generates a timestamped filename if path is not provided.

        Returns:
            Absolute path to exported file
        """
        with self._lock:
            if path is None:
                stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
                path = f"people_counter_{stamp}.csv"

            self._df.to_csv(path, index=False)
            abs_path = str(Path(path).resolve())
            logger.info(f"Exported {len(self._df)} rows to CSV: {abs_path}")
            return abs_path

    def clear(self) -> None:
        """Remove all samples."""
        with self._lock:
            self._df = empty_frame()
            logger.debug("HistoryStore cleared")


def _aggregate(df: pd.DataFrame) -> Dict[str, Any]:
    if df.empty:
        return {
            "in_count": 0,
            "out_count": 0,
            "peak_count": 0,
            "avg_count": 0.0,
            "data_points": 0,
        }

    return {
        "in_count": int(df["entries"].max() - df["entries"].min()),
        "out_count": int(df["exits"].max() - df["exits"].min()),
        "peak_count": int(df["current_count"].max()),
        "avg_count": round(float(df["current_count"].mean()), 2),
        "data_points": int(len(df)),
    }


PERIODS = ("hour", "day", "week", "month")


def period_window(period: str, now: datetime, tz: str = DEFAULT_TIMEZONE) -> Tuple[datetime, datetime]:
    """Start and end of a named reporting period ending at ``now``.

    "hour" is the last 60 minutes; "day", "week" (from Monday) and "month"
    start at local midnight of the period's first day. Unknown names fall
    back to "hour".

    Args:
        period: One of PERIODS
        now: End of the window (timezone-aware)
        tz: IANA timezone used for calendar boundaries
    """
    local_now = now.astimezone(ZoneInfo(tz))
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == "day":
        start = midnight
    elif period == "week":
        start = midnight - timedelta(days=local_now.weekday())
    elif period == "month":
        start = midnight.replace(day=1)
    else:
        start = local_now - timedelta(hours=1)
    return start, local_now
