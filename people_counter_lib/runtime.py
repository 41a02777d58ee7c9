"""Explicit composition of transport, access queue and poller."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from people_counter_lib.collaborators import (
    CommunicationReporter,
    FeatureFlagSource,
    HistoryStore,
    LiveStateStore,
    TenantResolver,
)
from people_counter_lib.config import CounterSettings
from people_counter_lib.job_queue import AccessQueue
from people_counter_lib.poller import ChangeDrivenPoller
from people_counter_lib.transport import ConnectionFactory, CounterTransport

logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    """External services the poller reports into."""

    flags: FeatureFlagSource
    tenants: TenantResolver
    live_store: LiveStateStore
    history_store: HistoryStore
    status_reporter: Optional[CommunicationReporter] = None
    error_reporter: Optional[CommunicationReporter] = None


class PeopleCounterRuntime:
    """Owns one transport, the queue that guards it, and the poller driving it.

    Build one per physical counter and pass it to whatever needs hardware
    access; there is no module-level instance.
    """

    def __init__(
        self,
        settings: CounterSettings,
        collaborators: Collaborators,
        connection_factory: Optional[ConnectionFactory] = None,
        transport: Optional[CounterTransport] = None,
    ) -> None:
        self.settings = settings
        self.collaborators = collaborators
        self.transport = transport or CounterTransport(
            port=settings.port,
            baud=settings.baud,
            response_timeout=settings.response_timeout_s,
            simulate=settings.simulate,
            connection_factory=connection_factory,
        )
        self.queue = AccessQueue(self.transport)
        self.poller = ChangeDrivenPoller(
            self.queue,
            flags=collaborators.flags,
            tenants=collaborators.tenants,
            live_store=collaborators.live_store,
            history_store=collaborators.history_store,
            status_reporter=collaborators.status_reporter,
            error_reporter=collaborators.error_reporter,
            interval_s=settings.poll_interval_s,
        )

    async def start(self) -> None:
        await self.poller.start()

    async def shutdown(self) -> None:
        """Stop polling and close the port."""
        await self.poller.stop()
        self.transport.close()
        logger.info("People counter runtime shut down")

    def describe(self) -> Dict[str, Any]:
        """Diagnostic snapshot for status endpoints and logs."""
        queue_status = self.queue.status()
        return {
            "poller_state": self.poller.state.value,
            "communication_ok": self.poller.communication_ok,
            "last_entries": self.poller.last_entries,
            "last_fault": self.transport.last_fault.value,
            "port": self.transport.port,
            "port_open": self.transport.is_open,
            "simulate": self.transport.simulate,
            "queue_length": queue_status.queue_length,
            "processing": queue_status.processing,
        }
