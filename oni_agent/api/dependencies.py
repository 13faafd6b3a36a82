from __future__ import annotations

from typing import Callable

from fastapi import Request

from oni_agent.api.errors import unavailable
from oni_agent.config.load_config import AgentConfig
from oni_agent.runtime.job_queue import JobQueue


BatchLookup = Callable[[str], bool]


def get_job_queue(request: Request) -> JobQueue:
    """FastAPI dependency: the queue built by the app lifespan."""
    q = getattr(request.app.state, "job_queue", None)
    if not isinstance(q, JobQueue):
        raise unavailable("Job queue is not running.")
    return q


def get_agent_config(request: Request) -> AgentConfig:
    cfg = getattr(request.app.state, "agent_config", None)
    if not isinstance(cfg, AgentConfig):
        raise unavailable("Agent configuration is not loaded.")
    return cfg


def get_batch_lookup(request: Request) -> BatchLookup | None:
    """Optional "is this batch loaded in ONI?" check; None when not wired up."""
    return getattr(request.app.state, "batch_lookup", None)
