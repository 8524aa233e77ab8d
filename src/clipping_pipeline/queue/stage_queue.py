from __future__ import annotations

import heapq
import threading
from dataclasses import replace
from typing import Any

from clipping_pipeline.jobs.models import STAGE_ORDER, Stage
from clipping_pipeline.queue.interfaces import QueueEntry, StageCounts
from clipping_pipeline.utils.log import logger


class StageQueues:
    """
    In-process stage queues: one (available_at, seq) heap per stage.

    - FIFO within a stage for entries that are ready at the same time
    - delayed entries (retry backoff) become ready at `available_at`
    - ownership: a job id sits in exactly one stage (waiting or active)
    """

    def __init__(self, stages: tuple[Stage, ...] = STAGE_ORDER) -> None:
        self._lock = threading.Lock()
        self._seq = 0
        self._heaps: dict[Stage, list[tuple[float, int, QueueEntry]]] = {s: [] for s in stages}
        # job_id -> (stage, seq of the live waiting entry or None when active)
        self._owner: dict[str, tuple[Stage, int | None]] = {}

    def _push(self, entry: QueueEntry) -> None:
        self._seq += 1
        heapq.heappush(self._heaps[entry.stage], (float(entry.available_at), self._seq, entry))
        self._owner[entry.job_id] = (entry.stage, self._seq)

    def enqueue(self, entry: QueueEntry) -> bool:
        """
        Add a job to a stage. Returns False if the job is already owned by
        that stage; raises if another stage owns it.
        """
        with self._lock:
            cur = self._owner.get(entry.job_id)
            if cur is not None:
                if cur[0] == entry.stage:
                    return False
                raise ValueError(
                    f"job {entry.job_id} already owned by {cur[0].value}, cannot enter {entry.stage.value}"
                )
            self._push(entry)
        logger.debug("stage_enqueued", job_id=entry.job_id, stage=entry.stage.value)
        return True

    def dequeue_ready(self, stage: Stage, now: float) -> QueueEntry | None:
        with self._lock:
            heap = self._heaps[stage]
            while heap:
                available_at, seq, entry = heap[0]
                cur = self._owner.get(entry.job_id)
                if cur is None or cur != (stage, seq):
                    # stale (removed or superseded)
                    heapq.heappop(heap)
                    continue
                if available_at > now:
                    return None
                heapq.heappop(heap)
                self._owner[entry.job_id] = (stage, None)
                return entry
            return None

    def requeue(self, entry: QueueEntry) -> None:
        """Put an active job back into its own stage (retry)."""
        with self._lock:
            cur = self._owner.get(entry.job_id)
            if cur is None or cur[0] != entry.stage:
                raise ValueError(f"job {entry.job_id} is not active in {entry.stage.value}")
            self._push(entry)

    def hand_off(self, job_id: str, to: QueueEntry) -> None:
        """Atomically move an active job into the next stage."""
        with self._lock:
            cur = self._owner.get(job_id)
            if cur is None or cur[1] is not None:
                raise ValueError(f"job {job_id} is not active in any stage")
            self._push(to)

    def release(self, job_id: str) -> None:
        with self._lock:
            self._owner.pop(job_id, None)

    def remove(self, job_id: str) -> bool:
        with self._lock:
            return self._owner.pop(job_id, None) is not None

    def owner(self, job_id: str) -> Stage | None:
        with self._lock:
            cur = self._owner.get(job_id)
        return cur[0] if cur is not None else None

    def is_active(self, job_id: str) -> bool:
        with self._lock:
            cur = self._owner.get(job_id)
        return cur is not None and cur[1] is None

    def next_ready_at(self, stage: Stage) -> float | None:
        with self._lock:
            live = [
                at
                for at, seq, e in self._heaps[stage]
                if self._owner.get(e.job_id) == (stage, seq)
            ]
        return min(live) if live else None

    def counts(self, now: float) -> dict[Stage, StageCounts]:
        out: dict[Stage, StageCounts] = {}
        with self._lock:
            for stage, heap in self._heaps.items():
                waiting = delayed = 0
                for at, seq, e in heap:
                    if self._owner.get(e.job_id) != (stage, seq):
                        continue
                    if at > now:
                        delayed += 1
                    else:
                        waiting += 1
                active = sum(1 for st, sq in self._owner.values() if st == stage and sq is None)
                out[stage] = StageCounts(waiting=waiting, delayed=delayed, active=active)
        return out

    def idle(self) -> bool:
        with self._lock:
            return not self._owner

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                job_id: {"stage": st.value, "active": sq is None}
                for job_id, (st, sq) in self._owner.items()
            }


def retry_entry(entry: QueueEntry, *, now: float, delay_s: float, error: str) -> QueueEntry:
    return replace(
        entry,
        attempt=int(entry.attempt) + 1,
        available_at=float(now) + float(delay_s),
        enqueued_at=float(now),
        last_error=error,
    )
