from __future__ import annotations

import json
import shutil
import threading
import time
from collections.abc import Callable
from contextlib import suppress
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Protocol

from sqlitedict import SqliteDict  # type: ignore

from clipping_pipeline.config import get_settings
from clipping_pipeline.jobs.models import Clip
from clipping_pipeline.ops import metrics
from clipping_pipeline.utils.log import logger

DAY_S = 86400.0


def reprocess_key(job_id: str, clip_id: str) -> str:
    return f"reprocess:{job_id}:{clip_id}"


def source_key(job_id: str) -> str:
    return f"reprocess:{job_id}"


@dataclass(frozen=True, slots=True)
class ReprocessCacheEntry:
    id: str
    start: float
    end: float
    title: str

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> ReprocessCacheEntry:
        d = json.loads(raw)
        return cls(
            id=str(d["id"]),
            start=float(d["start"]),
            end=float(d["end"]),
            title=str(d.get("title") or ""),
        )

    @classmethod
    def from_clip(cls, clip: Clip) -> ReprocessCacheEntry:
        return cls(id=clip.id, start=float(clip.start), end=float(clip.end), title=clip.title)


@dataclass(slots=True)
class ReprocessSource:
    """
    Job-level record: what a clip re-render needs once the job record is gone.
    """

    job_id: str
    source_path: str
    transcript: list[dict[str, Any]] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> ReprocessSource:
        d = json.loads(raw)
        return cls(
            job_id=str(d["job_id"]),
            source_path=str(d["source_path"]),
            transcript=list(d.get("transcript") or []),
        )


class TTLStore(Protocol):
    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str, *, ttl_s: float) -> None: ...
    def delete(self, key: str) -> None: ...


class LocalTTLStore:
    """
    SqliteDict table with per-key expiry (checked on read).
    """

    def __init__(self, db_path: Path, *, clock: Callable[[], float] = time.time) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._clock = clock

    def _db(self) -> SqliteDict:
        return SqliteDict(str(self.db_path), tablename="reprocess_cache", autocommit=True)

    def get(self, key: str) -> str | None:
        with self._lock, self._db() as db:
            rec = db.get(key)
            if rec is None:
                return None
            if float(rec.get("expires_at") or 0.0) <= self._clock():
                with suppress(KeyError):
                    del db[key]
                return None
            return str(rec["value"])

    def set(self, key: str, value: str, *, ttl_s: float) -> None:
        with self._lock, self._db() as db:
            db[key] = {"value": value, "expires_at": self._clock() + float(ttl_s)}

    def delete(self, key: str) -> None:
        with self._lock, self._db() as db, suppress(KeyError):
            del db[key]


class RedisTTLStore:
    def __init__(self, url: str) -> None:
        import redis  # type: ignore

        self._r = redis.Redis.from_url(url, decode_responses=True)

    def get(self, key: str) -> str | None:
        raw = self._r.get(key)
        return None if raw is None else str(raw)

    def set(self, key: str, value: str, *, ttl_s: float) -> None:
        self._r.set(key, value, ex=max(1, int(ttl_s)))

    def delete(self, key: str) -> None:
        self._r.delete(key)


class ReprocessCache:
    """
    Minimal clip descriptors kept for single-clip regeneration.

    Per clip: `reprocess:{job}:{clip}` -> {id, start, end, title}. Per job:
    `reprocess:{job}` -> source path + transcript, so a clip can be re-rendered
    after retention has evicted the job record. Source videos that lived in a
    job's work dir are moved under `sources_dir/<job_id>/` and removed once the
    job-level record expires.

    Expendable: a miss means "full reprocessing required", never an error.
    """

    def __init__(
        self, backend: TTLStore, *, ttl_days: float = 30, sources_dir: Path | None = None
    ) -> None:
        self.backend = backend
        self.ttl_s = float(ttl_days) * DAY_S
        self.sources_dir = Path(sources_dir) if sources_dir is not None else None

    def put(self, job_id: str, clip: Clip | ReprocessCacheEntry) -> None:
        entry = clip if isinstance(clip, ReprocessCacheEntry) else ReprocessCacheEntry.from_clip(clip)
        self.backend.set(reprocess_key(job_id, entry.id), entry.to_json(), ttl_s=self.ttl_s)

    def get(self, job_id: str, clip_id: str) -> ReprocessCacheEntry | None:
        raw = self.backend.get(reprocess_key(job_id, clip_id))
        if raw is None:
            with suppress(Exception):
                metrics.reprocess_cache_lookups.labels(outcome="miss").inc()
            return None
        try:
            entry = ReprocessCacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError) as ex:
            logger.warning("reprocess_cache_corrupt", job_id=job_id, clip_id=clip_id, error=str(ex))
            return None
        with suppress(Exception):
            metrics.reprocess_cache_lookups.labels(outcome="hit").inc()
        return entry

    def delete(self, job_id: str, clip_id: str) -> None:
        self.backend.delete(reprocess_key(job_id, clip_id))

    def put_many(self, job_id: str, clips: list[Clip]) -> int:
        n = 0
        for c in clips:
            self.put(job_id, c)
            n += 1
        return n

    # --- job-level record ---

    def put_source(self, rec: ReprocessSource) -> None:
        self.backend.set(source_key(rec.job_id), rec.to_json(), ttl_s=self.ttl_s)

    def get_source(self, job_id: str) -> ReprocessSource | None:
        raw = self.backend.get(source_key(job_id))
        if raw is None:
            return None
        try:
            return ReprocessSource.from_json(raw)
        except (ValueError, KeyError, TypeError) as ex:
            logger.warning("reprocess_source_corrupt", job_id=job_id, error=str(ex))
            return None

    def delete_source(self, job_id: str) -> None:
        self.backend.delete(source_key(job_id))

    def retain_source(self, job_id: str, source: Path, *, work_root: Path) -> Path:
        """
        Move a source file out of the job work dir so retention purges leave it
        alone. Files elsewhere (uploads) are returned unchanged.
        """
        src = Path(source)
        if self.sources_dir is None or not src.is_file():
            return src
        try:
            src.resolve().relative_to((Path(work_root) / str(job_id)).resolve())
        except ValueError:
            return src
        dest_dir = self.sources_dir / str(job_id)
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest = dest_dir / src.name
        shutil.move(str(src), str(dest))
        logger.info("reprocess_source_retained", job_id=job_id, path=str(dest))
        return dest

    def purge_expired_sources(self) -> int:
        """
        Remove retained source dirs whose job-level record is gone.
        """
        if self.sources_dir is None or not self.sources_dir.is_dir():
            return 0
        root = self.sources_dir.resolve()
        removed = 0
        for d in sorted(self.sources_dir.iterdir()):
            if not d.is_dir() or self.get_source(d.name) is not None:
                continue
            if d.resolve().parent != root:
                continue
            shutil.rmtree(d, ignore_errors=True)
            removed += 1
        if removed:
            logger.info("reprocess_sources_purged", count=removed)
        return removed


def build_reprocess_cache(*, clock: Callable[[], float] = time.time) -> ReprocessCache:
    """
    Redis when REPROCESS_CACHE_BACKEND=redis (or auto with REDIS_URL), else the
    local table in jobs.db.
    """
    s = get_settings()
    mode = str(s.reprocess_cache_backend or "auto").lower()
    url = str(s.redis_url or "")
    backend: TTLStore
    if mode == "redis" or (mode == "auto" and url):
        backend = RedisTTLStore(url)
        logger.info("reprocess_cache_backend", backend="redis")
    else:
        backend = LocalTTLStore(s.jobs_db_path(), clock=clock)
        logger.info("reprocess_cache_backend", backend="local")
    return ReprocessCache(
        backend,
        ttl_days=float(s.reprocess_ttl_days),
        sources_dir=Path(s.output_dir) / "reprocess",
    )
