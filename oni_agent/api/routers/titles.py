from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from oni_agent.api.dependencies import get_job_queue
from oni_agent.api.errors import invalid_argument
from oni_agent.runtime.job_queue import JobQueue


router = APIRouter()


class LoadTitleRequest(BaseModel):
    xml: str = Field(description="MARC XML for one or more titles.")


@router.post("/titles/load")
def load_title(body: LoadTitleRequest, q: JobQueue = Depends(get_job_queue)) -> dict[str, Any]:
    xml = (body.xml or "").strip()
    if not xml:
        raise invalid_argument("xml must not be empty.")

    j = q.new_load_title_job("title load", xml.encode("utf-8"))
    q.push(j)
    return {"job": j.to_dict()}
