from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from oni_agent.runtime.job import JobStatus
from oni_agent.runtime.job_queue import JobQueue
from oni_agent.runtime.runners import CommandFailedError
from oni_agent.runtime.venv import ONIEnvironment
from oni_agent.utils.cancel import CancellationToken


def _wait_for(pred, timeout_s: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if pred():
            return True
        time.sleep(0.05)
    return False


def test_new_job_ids_increase_and_are_registered(oni_env: ONIEnvironment) -> None:
    q = JobQueue(oni_env)
    a = q.new_oni_job("a", ["succeed"])
    b = q.new_oni_job("b", ["succeed"])

    assert a.id > 0
    assert b.id > a.id
    assert a.status is JobStatus.PENDING
    assert q.get_job(a.id) is a
    assert q.get_job(999) is None
    # Allocation alone doesn't queue anything.
    assert a.queued_at is None
    assert q.pending_count() == 0


def test_push_stamps_queue_time(oni_env: ONIEnvironment) -> None:
    q = JobQueue(oni_env, clock=lambda: 1234.0)
    j = q.new_oni_job("a", ["succeed"])
    q.push(j)
    assert j.queued_at == 1234.0
    assert q.pending_count() == 1


def test_all_jobs_sorted_by_queue_time(oni_env: ONIEnvironment) -> None:
    now = {"t": 100.0}
    q = JobQueue(oni_env, clock=lambda: now["t"])
    first = q.new_oni_job("first", ["succeed"])
    second = q.new_oni_job("second", ["succeed"])

    q.push(second)
    now["t"] = 200.0
    q.push(first)

    assert [j.name for j in q.all_jobs()] == ["second", "first"]


def test_run_success(oni_env: ONIEnvironment) -> None:
    q = JobQueue(oni_env)
    j = q.new_oni_job("test job", ["succeed"])
    j.run(CancellationToken())

    assert j.status is JobStatus.SUCCESSFUL
    assert len(j.stdout()) == 1
    assert j.stdout()[0].endswith("] Yes!")


def test_run_failure_keeps_output(oni_env: ONIEnvironment) -> None:
    q = JobQueue(oni_env)
    j = q.new_oni_job("test job", ["fail"])
    with pytest.raises(CommandFailedError):
        j.run(CancellationToken())

    assert j.status is JobStatus.FAILED
    assert j.stdout()[0].endswith("] starting")
    assert j.stderr()[0].endswith("] something broke")


def test_run_unknown_command(oni_env: ONIEnvironment) -> None:
    q = JobQueue(oni_env)
    j = q.new_oni_job("test job", ["nope"])
    with pytest.raises(CommandFailedError):
        j.run(CancellationToken())
    assert [line.split("] ", 1)[1] for line in j.stdout()] == ["No!"]


def test_run_couldnt_start(tmp_path: Path) -> None:
    q = JobQueue(ONIEnvironment.activate(tmp_path / "missing"))
    j = q.new_oni_job("test job", ["succeed"])
    with pytest.raises(OSError):
        j.run(CancellationToken())
    assert j.status is JobStatus.FAIL_START


def test_purge_old_jobs(oni_env: ONIEnvironment) -> None:
    q = JobQueue(oni_env)
    old = q.new_oni_job("old", ["succeed"])
    fresh = q.new_oni_job("fresh", ["succeed"])
    old.purge_at = time.time() - 3600

    assert q.purge_old_jobs() == 1
    assert q.get_job(old.id) is None
    assert q.get_job(fresh.id) is fresh


def test_retention_after_run(oni_env: ONIEnvironment) -> None:
    q = JobQueue(oni_env, clock=lambda: 0.0)
    ok = q.new_oni_job("ok", ["succeed"])
    bad = q.new_oni_job("bad", ["fail"])
    assert ok.purge_at == 30 * 86400

    ok.run(CancellationToken())
    with pytest.raises(CommandFailedError):
        bad.run(CancellationToken())

    assert ok.purge_at == 7 * 86400
    assert bad.purge_at == 24 * 3600


def test_worker_runs_jobs_in_order_without_overlap(oni_env: ONIEnvironment) -> None:
    q = JobQueue(oni_env)
    jobs = [q.new_oni_job(f"job {i}", ["succeed"]) for i in range(3)]
    failing = q.new_oni_job("failing", ["fail"])
    after = q.new_oni_job("after", ["succeed"])

    q.start_worker()
    try:
        assert q.running
        for j in jobs[:2] + [failing] + jobs[2:] + [after]:
            q.push(j)
        assert _wait_for(lambda: after.status is JobStatus.SUCCESSFUL)
    finally:
        q.stop_worker()

    assert failing.status is JobStatus.FAILED
    ordered = jobs[:2] + [failing] + jobs[2:] + [after]
    for prev, nxt in zip(ordered, ordered[1:]):
        assert prev.completed_at is not None and nxt.started_at is not None
        assert nxt.started_at >= prev.completed_at
    assert not q.running


def test_cancel_kills_running_job(oni_env: ONIEnvironment) -> None:
    q = JobQueue(oni_env)
    j = q.new_oni_job("slow job", ["slow"])
    q.push(j)

    cancel = CancellationToken()
    t = threading.Thread(target=q.wait, args=(cancel,), daemon=True)
    t.start()
    assert _wait_for(lambda: j.status is JobStatus.STARTED)

    cancel.request_cancel()
    t.join(timeout=10)
    assert not t.is_alive()
    assert j.status is JobStatus.FAILED


def test_status_snapshot(oni_env: ONIEnvironment, oni_dir: Path) -> None:
    q = JobQueue(oni_env)
    q.new_oni_job("a", ["succeed"]).run(CancellationToken())
    q.push(q.new_oni_job("b", ["succeed"]))

    snap = q.status_snapshot()
    assert snap["running"] is False
    assert snap["pending"] == 1
    assert snap["jobs_by_status"] == {"successful": 1, "pending": 1}
    assert snap["oni_location"] == str(oni_dir)


def test_job_taken_after_cancel_stays_pending_and_runs_next_time(oni_env: ONIEnvironment) -> None:
    q = JobQueue(oni_env)
    cancel = CancellationToken()
    t = threading.Thread(target=q.wait, args=(cancel,), daemon=True)
    t.start()
    time.sleep(0.2)

    # The consumer is blocked waiting for work when the cancel arrives.
    cancel.request_cancel()
    j = q.new_oni_job("batch purge", ["succeed"])
    q.push(j)
    t.join(timeout=10)

    assert not t.is_alive()
    assert j.status is JobStatus.PENDING
    assert j.started_at is None
    assert q.pending_count() == 1

    q.start_worker()
    try:
        assert _wait_for(lambda: j.status is JobStatus.SUCCESSFUL)
    finally:
        q.stop_worker()
    assert q.pending_count() == 0


def test_push_blocks_while_queue_is_full(oni_env: ONIEnvironment) -> None:
    q = JobQueue(oni_env, capacity=1)
    first = q.new_oni_job("first", ["succeed"])
    second = q.new_oni_job("second", ["succeed"])
    q.push(first)

    pusher = threading.Thread(target=q.push, args=(second,), daemon=True)
    pusher.start()
    time.sleep(0.3)
    assert pusher.is_alive()
    assert q.pending_count() == 1

    q.start_worker()
    try:
        pusher.join(timeout=10)
        assert not pusher.is_alive()
        assert _wait_for(lambda: second.status is JobStatus.SUCCESSFUL)
    finally:
        q.stop_worker()
    assert first.completed_at is not None and second.started_at is not None
    assert second.started_at >= first.completed_at


class _StepClock:
    """Every reading is five seconds after the previous one."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        self.now += 5.0
        return self.now


def test_consumer_purges_expired_jobs_periodically(oni_env: ONIEnvironment) -> None:
    q = JobQueue(oni_env, purge_interval_s=10.0, clock=_StepClock())
    expired = q.new_oni_job("expired", ["succeed"])
    kept = q.new_oni_job("kept", ["succeed"])
    expired.purge_at = 0.0

    cancel = CancellationToken()
    t = threading.Thread(target=q.wait, args=(cancel,), daemon=True)
    t.start()
    try:
        assert _wait_for(lambda: q.get_job(expired.id) is None)
    finally:
        cancel.request_cancel()
        t.join(timeout=10)
    assert q.get_job(kept.id) is kept
