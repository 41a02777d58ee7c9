"""Device status and error registries fed by communication health transitions."""

import logging
from collections import deque
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Deque, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

COMMUNICATION_ERROR_CODE = "COMMUNICATION_ERROR"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DeviceStatusBoard:
    """Per device/unit status flag shown to operators."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._status: Dict[Tuple[str, str], Dict[str, Any]] = {}

    def set_communication_error(self, device_id: str, unit_id: str) -> None:
        self._set(device_id, unit_id, "error")

    def clear_communication_error(self, device_id: str, unit_id: str) -> None:
        self._set(device_id, unit_id, "ok")

    def _set(self, device_id: str, unit_id: str, status: str) -> None:
        with self._lock:
            current = self._status.get((device_id, unit_id))
            if current is not None and current["status"] == status:
                return
            self._status[(device_id, unit_id)] = {
                "device_id": device_id,
                "unit_id": unit_id,
                "status": status,
                "since": _now(),
            }

    def get(self, device_id: str, unit_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._status.get((device_id, unit_id))
            return dict(entry) if entry else None

    def snapshot(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(entry) for entry in self._status.values()]


class DeviceErrorLog:
    """Active communication errors plus a bounded history of resolved ones.

    Repeated ``set_communication_error`` calls for an already active error are
    coalesced into the existing entry.
    """

    def __init__(self, history_size: int = 200) -> None:
        self._lock = RLock()
        self._active: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._resolved: Deque[Dict[str, Any]] = deque(maxlen=history_size)

    def set_communication_error(self, device_id: str, unit_id: str) -> None:
        with self._lock:
            key = (device_id, unit_id)
            if key in self._active:
                return
            self._active[key] = {
                "device_id": device_id,
                "unit_id": unit_id,
                "code": COMMUNICATION_ERROR_CODE,
                "message": f"No response from {device_id}/{unit_id}",
                "raised_at": _now(),
            }
            logger.info(f"Error raised: {COMMUNICATION_ERROR_CODE} on {device_id}/{unit_id}")

    def clear_communication_error(self, device_id: str, unit_id: str) -> None:
        with self._lock:
            entry = self._active.pop((device_id, unit_id), None)
            if entry is None:
                return
            entry["cleared_at"] = _now()
            self._resolved.append(entry)
            logger.info(f"Error cleared: {COMMUNICATION_ERROR_CODE} on {device_id}/{unit_id}")

    def active(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(entry) for entry in self._active.values()]

    def resolved(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(entry) for entry in self._resolved]
