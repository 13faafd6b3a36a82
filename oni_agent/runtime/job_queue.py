from __future__ import annotations

import logging
import queue
import threading
import time
from collections import Counter, deque
from typing import Any, Callable

from oni_agent.batchfix.fixer import BatchFixer
from oni_agent.config.load_config import AgentConfig, RetentionConfig
from oni_agent.runtime.job import Job
from oni_agent.runtime.runners import BatchPatchRunner, LoadTitleRunner, ONIRunner, Runner
from oni_agent.runtime.venv import ONIEnvironment
from oni_agent.utils.cancel import CancellationToken


logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000
DEFAULT_PURGE_INTERVAL_S = 3600.0
_RECEIVE_TIMEOUT_S = 1.0


class JobQueue:
    """In-memory queue that runs ONI jobs one at a time, in the order pushed.

    ONI management commands aren't safe to run concurrently against the same
    install and database, so a single consumer (wait) runs every job to
    completion before taking the next. Finished jobs stay visible for their
    retention window and are purged on an hourly sweep.
    """

    def __init__(
        self,
        env: ONIEnvironment,
        *,
        capacity: int = DEFAULT_CAPACITY,
        purge_interval_s: float = DEFAULT_PURGE_INTERVAL_S,
        retention: RetentionConfig | None = None,
        copy_attempts: int = 5,
        copy_delay_s: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._env = env
        self._lock = threading.Lock()
        self._seq = 0
        self._lookup: dict[int, Job] = {}
        self._pending: queue.Queue[Job] = queue.Queue(maxsize=int(capacity))
        self._purge_interval_s = float(purge_interval_s)
        self._retention = retention or RetentionConfig(failed_hours=24, successful_days=7, default_days=30)
        self._copy_attempts = int(copy_attempts)
        self._copy_delay_s = float(copy_delay_s)
        self._clock = clock

        self._thread: threading.Thread | None = None
        self._stop: CancellationToken | None = None
        self._current_job_id: int | None = None
        # Taken off the queue after a cancel; runs first when a consumer resumes.
        self._held: deque[Job] = deque()

    @classmethod
    def from_config(cls, cfg: AgentConfig) -> "JobQueue":
        return cls(
            ONIEnvironment.activate(cfg.oni.location),
            capacity=cfg.queue.capacity,
            purge_interval_s=cfg.queue.purge_interval_s,
            retention=cfg.retention,
            copy_attempts=cfg.copy.attempts,
            copy_delay_s=cfg.copy.delay_s,
        )

    @property
    def env(self) -> ONIEnvironment:
        return self._env

    def new_job(self, name: str, runner: Runner) -> Job:
        """Allocate and register a pending job. It won't run until pushed."""
        with self._lock:
            # Unpushed or forgotten jobs still get cleaned up eventually.
            purge_at = self._clock() + self._retention.default_s
            self._seq += 1
            j = Job(
                job_id=self._seq,
                name=name,
                runner=runner,
                purge_at=purge_at,
                failed_retention_s=self._retention.failed_s,
                successful_retention_s=self._retention.successful_s,
                clock=self._clock,
            )
            self._lookup[j.id] = j
        return j

    def new_oni_job(self, name: str, args: list[str]) -> Job:
        return self.new_job(name, ONIRunner(self._env, args))

    def new_load_title_job(self, name: str, xml: bytes) -> Job:
        return self.new_job(name, LoadTitleRunner(self._env, xml))

    def new_batch_patch_job(self, name: str, src: str, dest: str, keys: list[str]) -> Job:
        attempts, delay_s = self._copy_attempts, self._copy_delay_s
        runner = BatchPatchRunner(
            src,
            dest,
            keys,
            fixer_factory=lambda s, d: BatchFixer(s, d, copy_attempts=attempts, copy_delay_s=delay_s),
        )
        return self.new_job(name, runner)

    def push(self, job: Job) -> None:
        """Queue a job for the consumer. Blocks while the queue is full."""
        job.queued_at = self._clock()
        self._pending.put(job)
        logger.info("Job %d (%s) queued", job.id, job.name)

    def queue_oni_job(self, name: str, args: list[str]) -> int:
        j = self.new_oni_job(name, args)
        self.push(j)
        return j.id

    def get_job(self, job_id: int) -> Job | None:
        with self._lock:
            return self._lookup.get(int(job_id))

    def all_jobs(self) -> list[Job]:
        with self._lock:
            jobs = list(self._lookup.values())
        return sorted(jobs, key=lambda j: j.queued_at or 0.0)

    def purge_old_jobs(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [job_id for job_id, j in self._lookup.items() if now > j.purge_at]
            for job_id in expired:
                del self._lookup[job_id]
        if expired:
            logger.info("Purged %d expired job(s)", len(expired))
        return len(expired)

    def pending_count(self) -> int:
        return self._pending.qsize() + len(self._held)

    def wait(self, cancel: CancellationToken) -> None:
        """Consume queued jobs until cancelled, sweeping expired jobs periodically."""
        last_purge = self._clock()
        while not cancel.cancelled:
            j: Job | None = None
            if self._held:
                j = self._held.popleft()
            else:
                try:
                    j = self._pending.get(timeout=_RECEIVE_TIMEOUT_S)
                except queue.Empty:
                    pass

            if j is not None and cancel.cancelled:
                # Cancelled while blocked in get; the job was never started.
                self._held.appendleft(j)
                logger.info("Job %d (%s) left pending; consumer cancelled", j.id, j.name)
                break

            if j is not None:
                self._current_job_id = j.id
                try:
                    j.run(cancel)
                except Exception as e:
                    # Already recorded on the job; the loop keeps going regardless.
                    logger.debug("Job %d ended with %s", j.id, type(e).__name__)
                finally:
                    self._current_job_id = None
                    self._pending.task_done()

            if self._clock() - last_purge > self._purge_interval_s:
                self.purge_old_jobs()
                last_purge = self._clock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start_worker(self) -> None:
        if self.running:
            return
        self._stop = CancellationToken()
        self._thread = threading.Thread(target=self.wait, args=(self._stop,), name="oni-job-queue", daemon=True)
        self._thread.start()

    def stop_worker(self, *, timeout_s: float = 5.0) -> None:
        if self._stop is not None:
            self._stop.request_cancel()
        t = self._thread
        if t is None:
            return
        t.join(timeout=timeout_s)

    def status_snapshot(self) -> dict[str, Any]:
        jobs = self.all_jobs()
        return {
            "running": self.running,
            "current_job_id": self._current_job_id,
            "pending": self.pending_count(),
            "jobs_by_status": dict(Counter(j.status.value for j in jobs)),
            "oni_location": self._env.oni_path,
        }
