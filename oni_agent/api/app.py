from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from oni_agent import __version__
from oni_agent.api.dependencies import BatchLookup
from oni_agent.api.errors import (
    APIError,
    api_error_handler,
    unhandled_error_handler,
    validation_error_handler,
)
from oni_agent.config.load_config import AgentConfig, load_config
from oni_agent.runtime.job_queue import JobQueue

from .routers.batches import router as batches_router
from .routers.health import router as health_router
from .routers.jobs import router as jobs_router
from .routers.titles import router as titles_router


logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    return default


def create_app(
    *,
    job_queue: JobQueue | None = None,
    config: AgentConfig | None = None,
    batch_lookup: BatchLookup | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN202
        cfg = config or load_config()
        q = job_queue or JobQueue.from_config(cfg)
        app.state.agent_config = cfg
        app.state.job_queue = q
        app.state.batch_lookup = batch_lookup
        app.state.oni_check_job_id = None

        # A single consumer per process; jobs must never overlap.
        if _env_bool("ONI_AGENT_ENABLE_WORKER", True):
            q.start_worker()
            if _env_bool("ONI_AGENT_ONI_CHECK", True):
                # Startup sanity check that manage.py can be called with this configuration.
                j = q.new_oni_job("ONI check", ["check"])
                q.push(j)
                app.state.oni_check_job_id = j.id
                logger.info("Queued ONI check as job %d", j.id)
        try:
            yield
        finally:
            q.stop_worker()

    app = FastAPI(title="ONI Agent API", version=__version__, lifespan=lifespan)

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(health_router, prefix="/api/v1", tags=["system"])
    app.include_router(jobs_router, prefix="/api/v1", tags=["jobs"])
    app.include_router(batches_router, prefix="/api/v1", tags=["batches"])
    app.include_router(titles_router, prefix="/api/v1", tags=["titles"])

    return app


app = create_app()
