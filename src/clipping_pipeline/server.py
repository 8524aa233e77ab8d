from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from clipping_pipeline.api import routes_jobs, routes_system
from clipping_pipeline.runtime import Pipeline, build_pipeline
from clipping_pipeline.utils.log import logger


def create_app(pipeline: Pipeline | None = None, *, start_orchestrator: bool = True) -> FastAPI:
    """
    Build the API app. Tests pass a prebuilt pipeline (fake media ops) and may
    leave the orchestrator stopped to drive it by hand.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        p = pipeline or build_pipeline()
        app.state.pipeline = p
        if start_orchestrator:
            await p.orchestrator.start()
        logger.info("server_started")
        try:
            yield
        finally:
            if start_orchestrator:
                await p.orchestrator.stop()
            logger.info("server_stopped")

    app = FastAPI(title="clipping-pipeline", lifespan=lifespan)
    app.include_router(routes_system.router)
    app.include_router(routes_jobs.router)
    return app


app = create_app()
