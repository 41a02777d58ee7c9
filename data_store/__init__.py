"""Persistence and status collaborators for the people counter core."""

from data_store.schemas import SCHEMA, record_to_row
from data_store.status import DeviceErrorLog, DeviceStatusBoard
from data_store.store import HistoryStore, LiveStateStore, period_window

__all__ = [
    "SCHEMA",
    "record_to_row",
    "LiveStateStore",
    "HistoryStore",
    "DeviceStatusBoard",
    "DeviceErrorLog",
    "period_window",
]
