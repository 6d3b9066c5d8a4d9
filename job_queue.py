"""
In-process asyncio job queue with bounded workers and retry/backoff.

Jobs move pending -> processing -> completed | failed. A failed attempt
with attempts left goes back to pending after a backoff delay. The queue
knows nothing about certificates; the handler does the work.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from certificate_errors import CertificateError

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (1-based)."""
        return self.backoff_base * (2 ** (attempt - 1))

    def should_retry(self, attempt: int, exc: BaseException) -> bool:
        if attempt >= self.max_attempts:
            return False
        if isinstance(exc, CertificateError):
            return exc.retryable
        return True


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    payload: Any
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: JobState = JobState.PENDING
    attempts: int = 0
    progress: float = 0.0
    result: Any = None
    error: str | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def set_progress(self, done: int, total: int) -> None:
        self.progress = round(100.0 * done / total, 1) if total else 100.0
        self.updated_at = _now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "attempts": self.attempts,
            "progress": self.progress,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


JobHandler = Callable[[Job], Awaitable[Any]]
FinishedHook = Callable[[Job], None]


class JobQueue:
    def __init__(
        self,
        handler: JobHandler,
        workers: int = 2,
        retry_policy: RetryPolicy | None = None,
        on_finished: FinishedHook | None = None,
        keep_finished: int = 1000,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.handler = handler
        self.workers = workers
        self.retry_policy = retry_policy or RetryPolicy()
        self.on_finished = on_finished
        self.keep_finished = keep_finished
        self._jobs: dict[str, Job] = {}
        self._queue: asyncio.Queue[Job] | None = None
        self._tasks: list[asyncio.Task] = []
        self._retry_tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self._queue = asyncio.Queue()
        self._tasks = [asyncio.create_task(self._worker(i)) for i in range(self.workers)]
        # Jobs submitted before start() are picked up now.
        for job in self._jobs.values():
            if job.state is JobState.PENDING:
                self._queue.put_nowait(job)
        logger.info("Job queue started with %d worker(s)", self.workers)

    async def stop(self) -> None:
        for task in [*self._tasks, *self._retry_tasks]:
            task.cancel()
        await asyncio.gather(*self._tasks, *self._retry_tasks, return_exceptions=True)
        self._tasks = []
        self._retry_tasks.clear()
        self._queue = None

    def submit(self, payload: Any) -> Job:
        job = Job(payload=payload)
        self._jobs[job.id] = job
        if self._queue is not None:
            self._queue.put_nowait(job)
        return job

    def get(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def jobs(self) -> list[Job]:
        return list(self._jobs.values())

    async def join(self) -> None:
        """Wait until every submitted job has completed or failed."""
        while any(job.state in (JobState.PENDING, JobState.PROCESSING) for job in self._jobs.values()):
            if self._queue is None:
                raise RuntimeError("Job queue is not running")
            await self._queue.join()
            if self._retry_tasks:
                await asyncio.gather(*self._retry_tasks, return_exceptions=True)

    async def _requeue_later(self, job: Job, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._queue is not None:
            self._queue.put_nowait(job)

    def _schedule_retry(self, job: Job, delay: float) -> None:
        task = asyncio.create_task(self._requeue_later(job, delay))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            job = await queue.get()
            try:
                await self._run(job, index)
            finally:
                queue.task_done()

    async def _run(self, job: Job, worker_index: int) -> None:
        job.state = JobState.PROCESSING
        job.attempts += 1
        job.updated_at = _now()
        logger.info("Worker %d processing job %s (attempt %d)", worker_index, job.id, job.attempts)
        try:
            job.result = await self.handler(job)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            job.error = str(exc)
            job.updated_at = _now()
            if self.retry_policy.should_retry(job.attempts, exc):
                delay = self.retry_policy.delay_for(job.attempts)
                logger.warning("Job %s failed (%s), retrying in %.1fs", job.id, exc, delay)
                job.state = JobState.PENDING
                self._schedule_retry(job, delay)
            else:
                logger.error("Job %s failed after %d attempt(s): %s", job.id, job.attempts, exc)
                job.state = JobState.FAILED
                self._finish(job)
            return
        job.state = JobState.COMPLETED
        job.error = None
        job.progress = 100.0
        job.updated_at = _now()
        logger.info("Job %s completed", job.id)
        self._finish(job)

    def _finish(self, job: Job) -> None:
        if self.on_finished is not None:
            try:
                self.on_finished(job)
            except Exception:
                logger.exception("Finish hook failed for job %s", job.id)
        finished = [j for j in self._jobs.values() if j.state in (JobState.COMPLETED, JobState.FAILED)]
        # Dicts keep insertion order, so the oldest finished jobs are dropped first.
        for stale in finished[: max(0, len(finished) - self.keep_finished)]:
            del self._jobs[stale.id]
