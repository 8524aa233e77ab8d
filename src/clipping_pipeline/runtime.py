from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from clipping_pipeline.cache.store import ReprocessCache, build_reprocess_cache
from clipping_pipeline.config import get_settings
from clipping_pipeline.jobs.orchestrator import PipelineOrchestrator
from clipping_pipeline.jobs.reprocess import ClipReprocessor
from clipping_pipeline.jobs.store import JobStore
from clipping_pipeline.stages.builtin import BuiltinStages
from clipping_pipeline.stages.media import MediaOps, SubprocessMediaOps
from clipping_pipeline.utils.log import logger


@dataclass(slots=True)
class Pipeline:
    store: JobStore
    cache: ReprocessCache
    orchestrator: PipelineOrchestrator
    reprocessor: ClipReprocessor


def build_store(db_path: Path | None = None) -> JobStore:
    return JobStore(Path(db_path or get_settings().jobs_db_path()))


def build_pipeline(
    *,
    media: MediaOps | None = None,
    store: JobStore | None = None,
    cache: ReprocessCache | None = None,
) -> Pipeline:
    """
    Wire the store, reprocess cache, built-in stages and orchestrator from settings.
    """
    s = get_settings()
    media = media or SubprocessMediaOps()
    store = store or build_store()
    cache = cache or build_reprocess_cache()
    work_root = Path(s.output_dir) / "jobs"
    orch = PipelineOrchestrator(
        store=store,
        handlers=BuiltinStages(media).handlers(),
        reprocess_cache=cache,
        work_root=work_root,
    )
    logger.info("pipeline_built", db=str(store.db_path), work_root=str(work_root))
    return Pipeline(
        store=store,
        cache=cache,
        orchestrator=orch,
        reprocessor=ClipReprocessor(store=store, cache=cache, media=media, work_root=work_root),
    )
