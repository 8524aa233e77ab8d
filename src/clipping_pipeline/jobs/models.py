from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    queued = "queued"
    active = "active"
    completed = "completed"
    failed = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.completed, JobStatus.failed)


class Stage(str, Enum):
    ingest = "ingest"
    transcribe = "transcribe"
    detect_scenes = "detect-scenes"
    rank = "rank"
    render = "render"
    generate_texts = "generate-texts"
    export = "export"


STAGE_ORDER: tuple[Stage, ...] = (
    Stage.ingest,
    Stage.transcribe,
    Stage.detect_scenes,
    Stage.rank,
    Stage.render,
    Stage.generate_texts,
    Stage.export,
)

# Progress reported once a stage has finished.
STAGE_PROGRESS: dict[Stage, int] = {
    Stage.ingest: 15,
    Stage.transcribe: 35,
    Stage.detect_scenes: 50,
    Stage.rank: 60,
    Stage.render: 85,
    Stage.generate_texts: 95,
    Stage.export: 100,
}


def next_stage(stage: Stage) -> Stage | None:
    idx = STAGE_ORDER.index(stage)
    return STAGE_ORDER[idx + 1] if idx + 1 < len(STAGE_ORDER) else None


def now_utc() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True)
class SourceRef:
    kind: str  # "remote" | "upload"
    url: str = ""
    object_key: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SourceRef:
        return cls(
            kind=str(d.get("kind") or ""),
            url=str(d.get("url") or ""),
            object_key=str(d.get("object_key") or ""),
        )


@dataclass(frozen=True, slots=True)
class TranscriptSegment:
    start: float
    end: float
    text: str

    @property
    def duration(self) -> float:
        return max(0.0, float(self.end) - float(self.start))

    def to_dict(self) -> dict[str, Any]:
        return {"start": float(self.start), "end": float(self.end), "text": str(self.text)}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TranscriptSegment:
        return cls(start=float(d["start"]), end=float(d["end"]), text=str(d.get("text") or ""))


def segments_from_list(items: list[dict[str, Any]] | None) -> list[TranscriptSegment]:
    segs = [TranscriptSegment.from_dict(x) for x in (items or [])]
    segs.sort(key=lambda s: (s.start, s.end))
    return segs


def segments_in_window(
    segments: list[TranscriptSegment], start: float, end: float
) -> list[TranscriptSegment]:
    """Segments overlapping the half-open window (start, end)."""
    return [s for s in segments if s.start < end and s.end > start]


@dataclass(frozen=True, slots=True)
class Clip:
    id: str
    start: float
    end: float
    title: str = ""
    score: float = 0.0
    transcript: tuple[TranscriptSegment, ...] = ()
    video_path: str = ""
    caption_path: str = ""
    description: str = ""
    hashtags: tuple[str, ...] = ()
    export_uri: str = ""

    @property
    def duration(self) -> float:
        return max(0.0, float(self.end) - float(self.start))

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["transcript"] = [s.to_dict() for s in self.transcript]
        d["hashtags"] = list(self.hashtags)
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Clip:
        return cls(
            id=str(d["id"]),
            start=float(d["start"]),
            end=float(d["end"]),
            title=str(d.get("title") or ""),
            score=float(d.get("score") or 0.0),
            transcript=tuple(segments_from_list(d.get("transcript"))),
            video_path=str(d.get("video_path") or ""),
            caption_path=str(d.get("caption_path") or ""),
            description=str(d.get("description") or ""),
            hashtags=tuple(str(h) for h in (d.get("hashtags") or [])),
            export_uri=str(d.get("export_uri") or ""),
        )

    def with_changes(self, **changes: Any) -> Clip:
        return replace(self, **changes)


@dataclass(slots=True)
class Job:
    id: str
    source: SourceRef
    target_duration_s: float
    clip_count: int
    created_at: str
    updated_at: str
    stage: Stage | None = Stage.ingest
    status: JobStatus = JobStatus.queued
    # Pipeline FSM position: "queued", a stage name, "completed" or "failed".
    state: str = "queued"
    progress: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    attempts: dict[str, int] = field(default_factory=dict)
    events: list[dict[str, Any]] = field(default_factory=list)
    result: dict[str, Any] | None = None
    failed_reason: str | None = None
    finished_on: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["source"] = self.source.to_dict()
        d["stage"] = self.stage.value if self.stage is not None else None
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Job:
        dd = dict(d)
        dd["source"] = SourceRef.from_dict(dict(dd.get("source") or {}))
        st = dd.get("stage")
        dd["stage"] = Stage(st) if st else None
        dd["status"] = JobStatus(dd.get("status") or "queued")
        dd.setdefault("metadata", {})
        dd.setdefault("data", {})
        dd.setdefault("attempts", {})
        dd.setdefault("events", [])
        dd.setdefault("clip_count", 5)
        dd.setdefault("state", "queued")
        return cls(**dd)

    def status_view(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "stage": self.stage.value if self.stage is not None else None,
            "status": self.status.value,
            "progress": int(self.progress),
            "result": self.result,
            "failed_reason": self.failed_reason,
            "finished_on": self.finished_on,
        }
