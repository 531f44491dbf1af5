"""
In-process job queue with a single worker.

Jobs run one at a time in enqueue order. Finished jobs are retained for inspection
(last ``keep_completed`` completed, last ``keep_failed`` failed) and, when a cache is
given, mirrored to it so other processes can read job state.
"""

import asyncio
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from cache.resilient import ResilientCache
from db.store import utc_now
from utils.logger import get_logger

logger = get_logger(__name__)

JOB_STATE_TTL_S = 7 * 24 * 3600
CANCELLED_ERROR = "cancelled: queue stopped"

JobHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobRecord:
    id: str
    name: str
    payload: dict[str, Any]
    state: JobState
    enqueued_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    attempts: int = 0
    _done: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "payload": self.payload,
            "state": self.state.value,
            "enqueued_at": self.enqueued_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "result": self.result,
            "error": self.error,
        }

    async def wait(self) -> "JobRecord":
        await self._done.wait()
        return self


class JobQueue:
    def __init__(
        self,
        name: str,
        handler: JobHandler,
        *,
        keep_completed: int = 10,
        keep_failed: int = 5,
        cache: ResilientCache | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.name = name
        self.handler = handler
        self.cache = cache
        self.clock = clock
        self._queue: asyncio.Queue[JobRecord] | None = None
        self._worker: asyncio.Task | None = None
        self._waiting: list[JobRecord] = []
        self._active: JobRecord | None = None
        self._completed: deque[JobRecord] = deque(maxlen=keep_completed)
        self._failed: deque[JobRecord] = deque(maxlen=keep_failed)

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._work(), name=f"jobqueue-{self.name}")
        logger.info(f"Job queue '{self.name}' started")

    async def stop(self) -> None:
        """
        Cancel the worker. The active job and every waiting job end up FAILED with
        CANCELLED_ERROR; nothing stays waiting on a stopped queue.
        """
        if self._worker is None:
            return
        interrupted = self._active
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None

        cancelled = [interrupted] if interrupted else []
        if interrupted is not None and interrupted.state is JobState.ACTIVE:
            # cancelled before the handler started
            self._cancel(interrupted)
        self._active = None
        for job in self._waiting:
            self._cancel(job)
            cancelled.append(job)
        self._waiting.clear()
        for job in cancelled:
            await self._mirror(job)

        logger.info(
            f"Job queue '{self.name}' stopped",
            extra={
                "extra_fields": {"queue": self.name, "cancelled": [j.id for j in cancelled]}
            },
        )

    def _cancel(self, job: JobRecord) -> None:
        job.state = JobState.FAILED
        job.error = CANCELLED_ERROR
        job.finished_at = self.clock()
        self._failed.append(job)
        job._done.set()

    async def enqueue(self, payload: dict[str, Any], name: str | None = None) -> JobRecord:
        if not self.running or self._queue is None:
            raise RuntimeError(f"Job queue '{self.name}' is not started")
        job = JobRecord(
            id=str(uuid.uuid4()),
            name=name or self.name,
            payload=dict(payload),
            state=JobState.WAITING,
            enqueued_at=self.clock(),
        )
        self._waiting.append(job)
        await self._queue.put(job)
        await self._mirror(job)
        logger.info(
            f"Enqueued job {job.id}",
            extra={"extra_fields": {"queue": self.name, "job_id": job.id, "job_name": job.name}},
        )
        return job

    async def join(self) -> None:
        """Wait until every enqueued job has finished."""
        if self._queue is not None:
            await self._queue.join()

    def counts(self) -> dict[str, int]:
        return {
            "waiting": len(self._waiting),
            "active": 1 if self._active else 0,
            "completed": len(self._completed),
            "failed": len(self._failed),
        }

    def recent(self) -> list[JobRecord]:
        """Retained finished jobs, newest first, plus the active and waiting ones."""
        finished = sorted(
            [*self._completed, *self._failed],
            key=lambda j: j.finished_at or j.enqueued_at,
            reverse=True,
        )
        active = [self._active] if self._active else []
        return [*active, *self._waiting, *finished]

    def get(self, job_id: str) -> JobRecord | None:
        return next((j for j in self.recent() if j.id == job_id), None)

    async def _mirror(self, job: JobRecord) -> None:
        if self.cache is not None:
            await self.cache.set(f"jobs:{self.name}:{job.id}", job.to_dict(), JOB_STATE_TTL_S)

    async def _work(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._execute(job)
            finally:
                self._queue.task_done()

    async def _execute(self, job: JobRecord) -> None:
        self._waiting.remove(job)
        self._active = job
        job.state = JobState.ACTIVE
        job.started_at = self.clock()
        job.attempts += 1
        await self._mirror(job)

        try:
            job.result = await self.handler(job.payload)
        except asyncio.CancelledError:
            job.state = JobState.FAILED
            job.error = CANCELLED_ERROR
            self._failed.append(job)
            raise
        except Exception as e:
            job.state = JobState.FAILED
            job.error = f"{type(e).__name__}: {e}"
            self._failed.append(job)
            logger.error(
                f"Job {job.id} failed with error: {e}",
                extra={"extra_fields": {"queue": self.name, "job_id": job.id}},
                exc_info=True,
            )
        else:
            job.state = JobState.COMPLETED
            self._completed.append(job)
            logger.info(
                f"Job {job.id} completed successfully",
                extra={
                    "extra_fields": {"queue": self.name, "job_id": job.id, "result": job.result}
                },
            )
        finally:
            job.finished_at = self.clock()
            self._active = None
            job._done.set()

        await self._mirror(job)
