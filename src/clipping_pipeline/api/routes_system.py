from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from clipping_pipeline.api.deps import get_pipeline, require_token
from clipping_pipeline.ops.metrics import REGISTRY
from clipping_pipeline.runtime import Pipeline

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, Any]:
    return {"ok": True}


@router.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


@router.get("/api/queue/health", dependencies=[Depends(require_token)])
async def queue_health(pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    return pipeline.orchestrator.health()


@router.post("/api/admin/cleanup", dependencies=[Depends(require_token)])
async def run_cleanup(pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    evicted = await asyncio.to_thread(pipeline.orchestrator.cleanup)
    return {"evicted": evicted}
