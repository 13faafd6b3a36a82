from __future__ import annotations

import os
import re
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from oni_agent.api.dependencies import BatchLookup, get_agent_config, get_batch_lookup, get_job_queue
from oni_agent.api.errors import APIError, invalid_argument, unavailable
from oni_agent.batchfix.batch_patch import BatchPatch, BatchPatchParseError
from oni_agent.batchfix.batch_xml import ManifestError, validate_batch
from oni_agent.config.load_config import AgentConfig
from oni_agent.runtime.job import no_op_job
from oni_agent.runtime.job_queue import JobQueue


router = APIRouter()

_BATCH_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class PatchBatchRequest(BaseModel):
    destination: str = Field(description="Name of the corrected batch, created next to the source batch.")
    remove_issues: list[str] = Field(default_factory=list, description="Issue keys such as sn12345678/1900-01-01_01.")
    patch: str | None = Field(default=None, description="Batch patch text; used instead of remove_issues when given.")


def _require_batch_name(name: str, *, field: str = "batch_name") -> str:
    s = (name or "").strip()
    if not _BATCH_NAME_RE.match(s) or ".." in s:
        raise invalid_argument(f"Invalid {field}.", **{field: name})
    return s


def _batch_source(cfg: AgentConfig) -> str:
    if not cfg.oni.batch_source:
        raise unavailable("BATCH_SOURCE is not configured.")
    return cfg.oni.batch_source


@router.post("/batches/{batch_name}/load")
def load_batch(
    batch_name: str,
    q: JobQueue = Depends(get_job_queue),
    cfg: AgentConfig = Depends(get_agent_config),
) -> dict[str, Any]:
    name = _require_batch_name(batch_name)
    batch_path = os.path.join(_batch_source(cfg), name)
    try:
        validate_batch(batch_path)
    except ManifestError as e:
        raise APIError(
            status_code=400,
            code="invalid_batch",
            message=f"Batch {name!r} is not valid: {e}",
            details={"path": batch_path},
        ) from e

    j = q.new_oni_job("batch load", ["load_batch", batch_path])
    q.push(j)
    return {"job": j.to_dict()}


@router.post("/batches/{batch_name}/purge")
def purge_batch(
    batch_name: str,
    q: JobQueue = Depends(get_job_queue),
    batch_lookup: BatchLookup | None = Depends(get_batch_lookup),
) -> dict[str, Any]:
    name = _require_batch_name(batch_name)
    if batch_lookup is not None and not batch_lookup(name):
        # Nothing to purge; hand back a finished job so callers can poll as usual.
        return {"job": no_op_job().to_dict()}

    j = q.new_oni_job("batch purge", ["purge_batch", name])
    q.push(j)
    return {"job": j.to_dict()}


@router.post("/batches/{batch_name}/patch")
def patch_batch(
    batch_name: str,
    body: PatchBatchRequest,
    q: JobQueue = Depends(get_job_queue),
    cfg: AgentConfig = Depends(get_agent_config),
) -> dict[str, Any]:
    name = _require_batch_name(batch_name)
    dest_name = _require_batch_name(body.destination, field="destination")

    if body.patch is not None:
        try:
            bp = BatchPatch.from_text(body.patch)
        except BatchPatchParseError as e:
            raise invalid_argument(str(e)) from e
        if bp.batch_name and bp.batch_name != name:
            raise invalid_argument("Patch is for a different batch.", batch_name=name, patch_batch_name=bp.batch_name)
    else:
        bp = BatchPatch.removing(name, body.remove_issues)

    keys = bp.remove_issue_keys()
    if not keys:
        raise invalid_argument("At least one issue key is required.")

    source = _batch_source(cfg)
    src = os.path.join(source, name)
    dest = os.path.join(source, dest_name)
    j = q.new_batch_patch_job("batch patch", src, dest, keys)
    q.push(j)
    return {"job": j.to_dict()}
