from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from clipping_pipeline.jobs.models import Stage


@dataclass(frozen=True, slots=True)
class QueueEntry:
    job_id: str
    stage: Stage
    attempt: int = 1
    available_at: float = 0.0
    enqueued_at: float = 0.0
    last_error: str | None = None


@dataclass(frozen=True, slots=True)
class StageCounts:
    waiting: int
    delayed: int
    active: int

    def to_dict(self) -> dict[str, int]:
        return {"waiting": self.waiting, "delayed": self.delayed, "active": self.active}


class StageQueueBackend(Protocol):
    """
    Per-stage work queues.

    A job id is owned by at most one stage at a time, from enqueue until it is
    handed off, released or removed.
    """

    def enqueue(self, entry: QueueEntry) -> bool: ...

    def dequeue_ready(self, stage: Stage, now: float) -> QueueEntry | None: ...

    def requeue(self, entry: QueueEntry) -> None: ...

    def hand_off(self, job_id: str, to: QueueEntry) -> None: ...

    def release(self, job_id: str) -> None: ...

    def remove(self, job_id: str) -> bool: ...

    def owner(self, job_id: str) -> Stage | None: ...

    def is_active(self, job_id: str) -> bool: ...

    def next_ready_at(self, stage: Stage) -> float | None: ...

    def counts(self, now: float) -> dict[Stage, StageCounts]: ...

    def idle(self) -> bool: ...

    def snapshot(self) -> dict[str, Any]: ...
