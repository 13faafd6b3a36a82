from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from oni_agent.api.dependencies import get_job_queue
from oni_agent.api.errors import not_found
from oni_agent.runtime.job import NO_OP_JOB_ID, Job, no_op_job
from oni_agent.runtime.job_queue import JobQueue


router = APIRouter()


def _find_job(q: JobQueue, job_id: int) -> Job:
    if job_id == NO_OP_JOB_ID:
        return no_op_job()
    j = q.get_job(job_id)
    if j is None:
        raise not_found("Job not found.", job_id=job_id)
    return j


@router.get("/jobs")
def list_jobs(q: JobQueue = Depends(get_job_queue)) -> dict[str, Any]:
    return {"jobs": [j.to_dict() for j in q.all_jobs()]}


@router.get("/jobs/{job_id}")
def get_job(job_id: int, q: JobQueue = Depends(get_job_queue)) -> dict[str, Any]:
    return {"job": _find_job(q, job_id).to_dict()}


@router.get("/jobs/{job_id}/logs")
def get_job_logs(job_id: int, q: JobQueue = Depends(get_job_queue)) -> dict[str, Any]:
    j = _find_job(q, job_id)
    return {"job": j.to_dict(include_logs=True)}
