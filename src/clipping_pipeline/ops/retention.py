from __future__ import annotations

import shutil
import time
from dataclasses import dataclass
from pathlib import Path

from clipping_pipeline.config import get_settings
from clipping_pipeline.jobs.models import Job, JobStatus
from clipping_pipeline.utils.log import logger
from clipping_pipeline.utils.time import parse_iso_ts


@dataclass(frozen=True, slots=True)
class RetentionPolicy:
    completed_max_age_s: float = 24 * 3600.0
    completed_max_count: int = 100
    failed_max_age_s: float = 7 * 86400.0
    failed_max_count: int = 200

    @classmethod
    def from_settings(cls) -> RetentionPolicy:
        s = get_settings()
        return cls(
            completed_max_age_s=float(s.retain_completed_hours) * 3600.0,
            completed_max_count=int(s.retain_completed_count),
            failed_max_age_s=float(s.retain_failed_days) * 86400.0,
            failed_max_count=int(s.retain_failed_count),
        )


def _finished_ts(job: Job) -> float:
    ts = parse_iso_ts(job.finished_on) or parse_iso_ts(job.updated_at) or parse_iso_ts(job.created_at)
    return float(ts or 0.0)


def _select(jobs: list[Job], *, now: float, max_age_s: float, max_count: int) -> list[Job]:
    newest_first = sorted(jobs, key=_finished_ts, reverse=True)
    out: list[Job] = []
    for idx, job in enumerate(newest_first):
        if idx >= max(0, int(max_count)) or now - _finished_ts(job) > float(max_age_s):
            out.append(job)
    return out


def select_evictions(
    jobs: list[Job], *, now: float | None = None, policy: RetentionPolicy | None = None
) -> list[Job]:
    """
    Terminal jobs past their window or beyond the newest-N cap of their state.

    Non-terminal jobs are never selected.
    """
    t = time.time() if now is None else float(now)
    pol = policy or RetentionPolicy()
    completed = [j for j in jobs if j.status == JobStatus.completed]
    failed = [j for j in jobs if j.status == JobStatus.failed]
    return _select(
        completed, now=t, max_age_s=pol.completed_max_age_s, max_count=pol.completed_max_count
    ) + _select(failed, now=t, max_age_s=pol.failed_max_age_s, max_count=pol.failed_max_count)


def _safe_delete_dir(path: Path, *, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    if not path.exists():
        return False
    shutil.rmtree(path, ignore_errors=True)
    return True


def purge_job_dir(job_id: str, *, root: Path | None = None) -> bool:
    """
    Remove `<root>/<job_id>`, root defaulting to `<CLIPS_OUTPUT_DIR>/jobs`
    (refuses paths outside the root).
    """
    root = Path(root) if root is not None else Path(get_settings().output_dir) / "jobs"
    removed = _safe_delete_dir(root / str(job_id), root=root)
    if removed:
        logger.info("retention_purged_dir", job_id=str(job_id))
    return removed
