"""Contracts for the services the poller depends on, plus small stock implementations."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Protocol

from people_counter_lib import protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tenant:
    """Owning client of the installation."""

    id: str
    name: str = ""


class FeatureFlagSource(Protocol):
    """Reports whether people counting is enabled. Read on every tick."""

    def is_feature_enabled(self) -> bool:
        ...


class TenantResolver(Protocol):
    """Looks up the primary tenant. May raise; callers fall back to a default."""

    def get_primary_tenant(self) -> Tenant:
        ...


class LiveStateStore(Protocol):
    """Holds exactly one live record per device key."""

    def upsert(self, device_key: str, fields: Mapping[str, Any], timestamp: datetime) -> None:
        ...


class HistoryStore(Protocol):
    """Append-only store of historical samples."""

    def append(self, record: Mapping[str, Any]) -> None:
        ...


class CommunicationReporter(Protocol):
    """Receives communication health transitions for a device/unit pair."""

    def set_communication_error(self, device_id: str, unit_id: str) -> None:
        ...

    def clear_communication_error(self, device_id: str, unit_id: str) -> None:
        ...


class RuntimeSettings:
    """Thread-safe, live-toggleable feature flag."""

    def __init__(self, enabled: bool = False) -> None:
        self._lock = threading.Lock()
        self._enabled = enabled

    def is_feature_enabled(self) -> bool:
        with self._lock:
            return self._enabled

    def set_feature_enabled(self, enabled: bool) -> None:
        with self._lock:
            if enabled != self._enabled:
                logger.info(f"People counter {'enabled' if enabled else 'disabled'}")
            self._enabled = enabled

    def snapshot(self) -> Dict[str, bool]:
        return {"peopleCounterEnabled": self.is_feature_enabled()}


class StaticTenantResolver:
    """Resolver returning a fixed tenant."""

    def __init__(self, tenant_id: str = protocol.DEFAULT_CLIENT_ID, name: str = "") -> None:
        self._tenant = Tenant(id=tenant_id, name=name)

    def get_primary_tenant(self) -> Tenant:
        return self._tenant


class NullReporter:
    """Reporter that ignores health transitions."""

    def set_communication_error(self, device_id: str, unit_id: str) -> None:
        pass

    def clear_communication_error(self, device_id: str, unit_id: str) -> None:
        pass
