"""FIFO access queue serializing all use of the people counter transport."""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Optional

from people_counter_lib import parsing
from people_counter_lib.models import QueueStatus, Reading, ResetScope
from people_counter_lib.transport import CounterTransport

logger = logging.getLogger(__name__)


class JobKind(Enum):
    """Kinds of work the queue can run against the transport."""

    QUERY = "query"
    RESET = "reset"
    RELEASE = "release"


@dataclass
class Job:
    """One queued hardware operation and the future its caller awaits."""

    kind: JobKind
    future: "asyncio.Future[Any]"
    scope: Optional[ResetScope] = None
    seq: int = field(default=0)


class AccessQueue:
    """Sole gateway to a ``CounterTransport``.

    Jobs from any number of concurrent callers run one at a time, in
    submission order. A single worker task drains the queue and resolves each
    job's future exactly once; it yields to the event loop between jobs.
    """

    def __init__(self, transport: CounterTransport) -> None:
        self._transport = transport
        self._pending: Deque[Job] = deque()
        self._processing = False
        self._worker: Optional[asyncio.Task] = None
        self._seq = 0
        logger.info("Access queue initialized")

    @property
    def transport(self) -> CounterTransport:
        """Transport owned by this queue (read-only access for diagnostics)."""
        return self._transport

    # ========================================================================
    # Submission
    # ========================================================================

    async def submit_query(self) -> Optional[Reading]:
        """Queue a status query.

        Returns:
            Reading, or None if the device gave no usable response
        """
        return await self._submit(JobKind.QUERY)

    async def submit_reset(self, scope) -> bool:
        """Queue a counter reset.

        Args:
            scope: ResetScope or its wire name ("current", "in", "out", "all")

        Returns:
            True if every reset frame was written

        Raises:
            InvalidResetScope: If scope is unknown (raised before queueing)
        """
        return await self._submit(JobKind.RESET, parsing.coerce_scope(scope))

    async def release(self) -> None:
        """Close the transport once all earlier jobs have finished."""
        await self._submit(JobKind.RELEASE)

    def status(self) -> QueueStatus:
        """Queue depth and whether a job is executing (diagnostics only)."""
        return QueueStatus(queue_length=len(self._pending), processing=self._processing)

    # ========================================================================
    # Worker
    # ========================================================================

    def _submit(self, kind: JobKind, scope: Optional[ResetScope] = None) -> "asyncio.Future[Any]":
        loop = asyncio.get_running_loop()
        self._seq += 1
        job = Job(kind=kind, future=loop.create_future(), scope=scope, seq=self._seq)
        self._pending.append(job)
        logger.debug(f"Queued {kind.value} job #{job.seq} (depth {len(self._pending)})")

        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain(), name="people-counter-queue")
        return job.future

    async def _drain(self) -> None:
        while self._pending:
            job = self._pending.popleft()
            if job.future.done():
                # Caller gave up (cancelled) before the job reached the transport
                logger.debug(f"Skipping {job.kind.value} job #{job.seq}: caller cancelled")
                continue

            self._processing = True
            try:
                result = await self._execute(job)
            except Exception as e:
                logger.error(f"{job.kind.value} job #{job.seq} failed: {e}", exc_info=True)
                if not job.future.done():
                    job.future.set_exception(e)
            else:
                if not job.future.done():
                    job.future.set_result(result)
            finally:
                self._processing = False

            # Let callers woken by this result run before the next job starts
            await asyncio.sleep(0)

    async def _execute(self, job: Job) -> Any:
        if job.kind is JobKind.QUERY:
            return await self._transport.query()
        if job.kind is JobKind.RESET:
            return await self._transport.reset(job.scope)
        self._transport.close()
        return None
