from __future__ import annotations

from pathlib import Path
from typing import Any

from clipping_pipeline.cache.store import ReprocessCache, ReprocessSource
from clipping_pipeline.jobs.errors import JobNotFound, StageError
from clipping_pipeline.jobs.models import Clip, JobStatus, Stage, new_id, segments_from_list
from clipping_pipeline.jobs.store import JobStore
from clipping_pipeline.stages.builtin import render_one
from clipping_pipeline.stages.media import MediaOps
from clipping_pipeline.subtitles.preferences import SubtitlePreferences, parse_preferences
from clipping_pipeline.utils.log import logger


def cache_job_source(
    cache: ReprocessCache, job_id: str, data: dict[str, Any], *, work_root: Path
) -> int:
    """
    Write the job-level record, moving a work-dir source video into the
    cache-owned sources dir. Returns 1 when written, 0 when there is no source.
    """
    source = Path(str(data.get("source_path") or ""))
    if not data.get("clips") or not source.is_file():
        return 0
    kept = cache.retain_source(job_id, source, work_root=work_root)
    cache.put_source(
        ReprocessSource(
            job_id=job_id,
            source_path=str(kept),
            transcript=list(data.get("transcript") or []),
        )
    )
    return 1


def cache_job_data(
    cache: ReprocessCache, job_id: str, data: dict[str, Any], *, work_root: Path
) -> int:
    """
    Write the per-clip entries and the job-level record for a completed job.
    """
    clips = [Clip.from_dict(c) for c in data.get("clips") or []]
    return cache.put_many(job_id, clips) + cache_job_source(cache, job_id, data, work_root=work_root)


class ClipReprocessor:
    """
    Re-render one clip with new caption preferences, without re-running the
    pipeline. Reads the clip entry and the job-level record from the reprocess
    cache, so it keeps working after retention has evicted the job record.
    """

    def __init__(
        self, *, store: JobStore, cache: ReprocessCache, media: MediaOps, work_root: Path
    ) -> None:
        self.store = store
        self.cache = cache
        self.media = media
        self.work_root = Path(work_root)

    def _source_for(self, job_id: str) -> ReprocessSource:
        rec = self.cache.get_source(job_id)
        if rec is not None:
            return rec
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return ReprocessSource(
            job_id=job_id,
            source_path=str(job.data.get("source_path") or ""),
            transcript=list(job.data.get("transcript") or []),
        )

    def _output_dir(self, job_id: str) -> Path:
        if self.cache.sources_dir is not None and self.store.get(job_id) is None:
            return self.cache.sources_dir / job_id / "reprocess" / new_id()[:8]
        return self.work_root / job_id / "reprocess" / new_id()[:8]

    def reprocess(
        self,
        job_id: str,
        clip_id: str,
        preferences: dict[str, Any] | SubtitlePreferences | None = None,
    ) -> dict[str, Any] | None:
        """
        Returns the new render, or None when the cache has no entry for the clip
        (full reprocessing required).
        """
        prefs = parse_preferences(preferences)
        rec = self._source_for(job_id)
        entry = self.cache.get(job_id, clip_id)
        if entry is None:
            logger.info("reprocess_cache_miss", job_id=job_id, clip_id=clip_id)
            return None

        source = Path(rec.source_path)
        if not rec.source_path or not source.is_file():
            raise StageError(Stage.render.value, f"original video not found at {source}")
        transcript = segments_from_list(rec.transcript)
        clip = Clip(id=entry.id, start=entry.start, end=entry.end, title=entry.title)

        out = render_one(self.media, source, transcript, clip, prefs, self._output_dir(job_id))
        out["job_id"] = job_id
        out["duration"] = round(clip.duration, 3)
        logger.info("clip_reprocessed", job_id=job_id, clip_id=clip_id, font_size=out["font_size"])
        return out

    def backfill(self) -> int:
        """
        Write cache entries for completed jobs that lack them.
        """
        written = 0
        for job in self.store.list(limit=None, status=JobStatus.completed.value):
            clips = [Clip.from_dict(raw) for raw in job.data.get("clips") or []]
            missing = [c for c in clips if self.cache.get(job.id, c.id) is None]
            written += self.cache.put_many(job.id, missing)
            if self.cache.get_source(job.id) is None:
                written += cache_job_source(self.cache, job.id, job.data, work_root=self.work_root)
        if written:
            logger.info("reprocess_cache_backfilled", entries=written)
        return written
