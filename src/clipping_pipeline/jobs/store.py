from __future__ import annotations

import threading
from collections.abc import Callable
from contextlib import suppress
from pathlib import Path

from sqlitedict import SqliteDict  # type: ignore

from clipping_pipeline.jobs.models import Job, JobStatus, now_utc
from clipping_pipeline.utils.log import logger


class JobStore:
    """
    Durable job records (SqliteDict table `jobs` inside jobs.db).

    The orchestrator is the only writer of job records; HTTP/CLI readers go
    through `get`/`list`.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        with self._jobs() as _db:
            pass

    def _jobs(self) -> SqliteDict:
        # Open/close per operation (avoids cross-thread SQLite handle issues)
        return SqliteDict(str(self.db_path), tablename="jobs", autocommit=True)

    def put(self, job: Job) -> None:
        with self._lock, self._jobs() as db:
            db[job.id] = job.to_dict()

    def get(self, id: str) -> Job | None:
        with self._lock, self._jobs() as db:
            raw = db.get(str(id))
        if raw is None:
            return None
        return Job.from_dict(raw)

    def get_or_create(self, job_id: str, factory: Callable[[], Job]) -> tuple[Job, bool]:
        """
        Return (job, created). An existing record is returned untouched.
        """
        with self._lock, self._jobs() as db:
            raw = db.get(str(job_id))
            if raw is not None:
                return Job.from_dict(raw), False
            job = factory()
            db[job.id] = job.to_dict()
        logger.info("job_created", job_id=job.id)
        return job, True

    def mutate(self, id: str, fn: Callable[[Job], None]) -> Job | None:
        """
        Read-modify-write under the store lock. Returns None if the job vanished.
        """
        with self._lock, self._jobs() as db:
            raw = db.get(str(id))
            if raw is None:
                return None
            job = Job.from_dict(raw)
            fn(job)
            job.updated_at = now_utc()
            db[job.id] = job.to_dict()
        return job

    def list(self, limit: int | None = 100, status: str | None = None) -> list[Job]:
        with self._lock, self._jobs() as db:
            items = list(db.items())

        jobs = [Job.from_dict(v) for _, v in items]
        if status:
            try:
                st = JobStatus(status)
            except ValueError:
                return []
            jobs = [j for j in jobs if j.status == st]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs if limit is None else jobs[: int(limit)]

    def delete_job(self, id: str) -> bool:
        if not id:
            return False
        with self._lock, self._jobs() as db:
            if str(id) not in db:
                return False
            with suppress(KeyError):
                del db[str(id)]
        return True

    def counts(self) -> dict[str, int]:
        out = {s.value: 0 for s in JobStatus}
        for j in self.list(limit=None):
            out[j.status.value] = out.get(j.status.value, 0) + 1
        return out
