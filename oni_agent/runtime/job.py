from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable

from oni_agent.runtime.runners import NoOpRunner, Runner
from oni_agent.utils.cancel import CancellationToken


logger = logging.getLogger(__name__)

HOUR_S = 3600.0
DAY_S = 24 * HOUR_S

NO_OP_JOB_ID = -1


class JobStatus(str, Enum):
    PENDING = "pending"
    STARTED = "started"
    FAIL_START = "couldn't start"
    SUCCESSFUL = "successful"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.FAIL_START, JobStatus.SUCCESSFUL, JobStatus.FAILED})


class JobStateError(RuntimeError):
    pass


class Job:
    """A single piece of background work and its lifecycle.

    pending -> started -> successful | failed, or pending -> couldn't start
    when the runner can't be launched. Failed jobs are kept for a day,
    successful ones for a week.
    """

    def __init__(
        self,
        *,
        job_id: int,
        name: str,
        runner: Runner,
        purge_at: float,
        failed_retention_s: float = 24 * HOUR_S,
        successful_retention_s: float = 7 * DAY_S,
        clock: Callable[[], float] = time.time,
        status: JobStatus = JobStatus.PENDING,
    ) -> None:
        self._id = int(job_id)
        self._name = str(name)
        self._runner = runner
        self._status = status
        self._clock = clock
        self._failed_retention_s = float(failed_retention_s)
        self._successful_retention_s = float(successful_retention_s)
        self.queued_at: float | None = None
        self.started_at: float | None = None
        self.completed_at: float | None = None
        self.purge_at = float(purge_at)
        self._err: BaseException | None = None

    @property
    def id(self) -> int:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def status(self) -> JobStatus:
        return self._status

    @property
    def error(self) -> BaseException | None:
        """First error raised while starting or running the job."""
        return self._err

    @property
    def runner(self) -> Runner:
        return self._runner

    @property
    def done(self) -> bool:
        return self._status in TERMINAL_STATUSES

    def stdout(self) -> list[str]:
        return self._runner.stdout.timestamped()

    def stderr(self) -> list[str]:
        return self._runner.stderr.timestamped()

    def start(self, cancel: CancellationToken) -> None:
        if self._status is not JobStatus.PENDING:
            raise JobStateError(f"job {self._id} cannot start from status {self._status.value!r}")

        try:
            self._runner.start(cancel)
        except Exception as e:
            self._err = e
            self._status = JobStatus.FAIL_START
            self.purge_at = self._clock() + self._failed_retention_s
            logger.error("Job %d (%s) couldn't start: %s", self._id, self._name, e)
            raise

        self._status = JobStatus.STARTED
        self.started_at = self._clock()
        logger.info("Job %d (%s) started", self._id, self._name)

    def wait(self) -> None:
        if self._status is JobStatus.FAIL_START:
            raise JobStateError("waiting for job completion: cannot start due to previous error") from self._err
        if self._status is JobStatus.FAILED:
            raise JobStateError("waiting for job completion: job already failed") from self._err
        if self._status is not JobStatus.STARTED or self.started_at is None:
            raise JobStateError("waiting for job completion: start must first be called")

        try:
            self._runner.wait()
        except Exception as e:
            self._err = e
            self._status = JobStatus.FAILED
            self.completed_at = self._clock()
            self.purge_at = self.completed_at + self._failed_retention_s
            logger.error("Job %d (%s) failed: %s", self._id, self._name, e)
            raise

        self._status = JobStatus.SUCCESSFUL
        self.completed_at = self._clock()
        self.purge_at = self.completed_at + self._successful_retention_s
        logger.info("Job %d (%s) completed", self._id, self._name)

    def run(self, cancel: CancellationToken) -> None:
        """Start the job and wait for it to finish."""
        self.start(cancel)
        self.wait()

    def to_dict(self, *, include_logs: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self._id,
            "name": self._name,
            "status": self._status.value,
            "done": self.done,
            "queued_at": self.queued_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "purge_at": self.purge_at,
            "error": str(self._err) if self._err is not None else None,
        }
        if include_logs:
            out["stdout"] = self.stdout()
            out["stderr"] = self.stderr()
        return out


def no_op_job() -> Job:
    """A job that is already done, for requests that need no work.

    Callers can poll its id like any other job without special cases.
    """
    now = time.time()
    j = Job(
        job_id=NO_OP_JOB_ID,
        name="no-op",
        runner=NoOpRunner(),
        purge_at=now + 30 * DAY_S,
        status=JobStatus.SUCCESSFUL,
    )
    j.queued_at = now
    j.started_at = now
    j.completed_at = now
    return j
