from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from clipping_pipeline.api.deps import get_pipeline, require_token
from clipping_pipeline.jobs.errors import (
    JobNotFound,
    StageError,
    StylePreferencesError,
    SubmissionError,
)
from clipping_pipeline.runtime import Pipeline

router = APIRouter(dependencies=[Depends(require_token)])


@router.post("/api/jobs", status_code=202)
async def submit_job(
    payload: dict[str, Any] = Body(...),
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    try:
        job_id = pipeline.orchestrator.submit(payload)
    except (SubmissionError, StylePreferencesError) as ex:
        raise HTTPException(status_code=422, detail=str(ex)) from ex
    return pipeline.orchestrator.status(job_id)


@router.get("/api/jobs")
async def list_jobs(
    status: str | None = None,
    limit: int = 25,
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    limit_i = max(1, min(200, int(limit)))
    jobs = pipeline.store.list(limit=limit_i, status=status)
    return {"items": [j.status_view() for j in jobs], "limit": limit_i}


@router.get("/api/jobs/{job_id}")
async def get_job(job_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    try:
        return pipeline.orchestrator.status(job_id)
    except JobNotFound as ex:
        raise HTTPException(status_code=404, detail="Not found") from ex


@router.get("/api/jobs/{job_id}/events")
async def get_job_events(job_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    try:
        job = pipeline.orchestrator.get_job(job_id)
    except JobNotFound as ex:
        raise HTTPException(status_code=404, detail="Not found") from ex
    return {"id": job.id, "events": job.events}


@router.delete("/api/jobs/{job_id}")
async def cancel_job(job_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    if pipeline.store.get(job_id) is None:
        raise HTTPException(status_code=404, detail="Not found")
    return {"id": job_id, "canceled": pipeline.orchestrator.cancel(job_id)}


@router.post("/api/jobs/{job_id}/clips/{clip_id}/reprocess")
async def reprocess_clip(
    job_id: str,
    clip_id: str,
    preferences: dict[str, Any] = Body(default_factory=dict),
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    try:
        out = await asyncio.to_thread(
            pipeline.reprocessor.reprocess, job_id, clip_id, preferences
        )
    except StylePreferencesError as ex:
        raise HTTPException(status_code=422, detail=str(ex)) from ex
    except JobNotFound as ex:
        raise HTTPException(status_code=404, detail="Not found") from ex
    except StageError as ex:
        raise HTTPException(status_code=500, detail=str(ex)) from ex
    if out is None:
        raise HTTPException(
            status_code=409,
            detail="Clip data not cached; full reprocessing required",
        )
    return out
