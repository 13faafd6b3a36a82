from __future__ import annotations

import importlib.metadata
import time
from typing import Any

from fastapi import APIRouter
from fastapi import Request

from oni_agent import __version__


router = APIRouter()


def _pkg_version(name: str) -> str | None:
    try:
        return str(importlib.metadata.version(name))
    except importlib.metadata.PackageNotFoundError:
        return None


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/version")
def version() -> dict[str, Any]:
    return {
        "service": "oni-agent",
        "version": __version__,
        "api": "v1",
        "deps": {
            "fastapi": _pkg_version("fastapi"),
            "uvicorn": _pkg_version("uvicorn"),
        },
        "ts": time.time(),
    }


@router.get("/system/worker")
def system_worker(request: Request) -> dict[str, Any]:
    # Expose minimal runtime observability for debugging.
    q = getattr(request.app.state, "job_queue", None)
    snapshot: dict[str, Any] = {"enabled": q is not None, "running": False}
    check: dict[str, Any] | None = None
    if q is not None:
        snapshot.update(q.status_snapshot())
        check_id = getattr(request.app.state, "oni_check_job_id", None)
        check_job = q.get_job(check_id) if check_id is not None else None
        if check_job is not None:
            check = {"job_id": check_job.id, "status": check_job.status.value}
    return {
        "ts": time.time(),
        "worker": snapshot,
        "startup": {"oni_check": check},
    }
