from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from clipping_pipeline.jobs.models import Clip, SourceRef, Stage, TranscriptSegment, segments_from_list


@dataclass(frozen=True, slots=True)
class StageContext:
    """
    Read-only view handed to a stage handler. Handlers return a dict of the
    fields they own; the orchestrator merges and persists it.
    """

    job_id: str
    stage: Stage
    attempt: int
    source: SourceRef
    target_duration_s: float
    clip_count: int
    work_dir: Path
    data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def require(self, key: str) -> Any:
        if key not in self.data:
            raise KeyError(f"{self.stage.value} needs '{key}' from an earlier stage")
        return self.data[key]

    def transcript(self) -> list[TranscriptSegment]:
        return segments_from_list(self.data.get("transcript"))

    def clips(self) -> list[Clip]:
        return [Clip.from_dict(c) for c in (self.data.get("clips") or [])]


StageOutput = dict[str, Any]
StageHandler = Callable[[StageContext], StageOutput | Awaitable[StageOutput]]
