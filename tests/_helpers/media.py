from __future__ import annotations

import shutil
import threading
from pathlib import Path

from clipping_pipeline.config import get_settings
from clipping_pipeline.jobs.models import TranscriptSegment

SAMPLE_TRANSCRIPT = [
    TranscriptSegment(0.0, 4.0, "welcome back to the channel everyone"),
    TranscriptSegment(4.5, 9.0, "today we are testing caption pipelines"),
    TranscriptSegment(9.2, 15.0, "the first trick is to cut on silence"),
    TranscriptSegment(16.0, 22.0, "the second trick is keeping captions short"),
    TranscriptSegment(23.0, 30.0, "and the third trick is consistent styling"),
    TranscriptSegment(31.0, 38.0, "thanks for watching and see you next time"),
]


class FakeMediaOps:
    """
    MediaOps stand-in: writes small placeholder files and records calls.
    `fail_plan[op] = n` makes the next n calls of `op` raise.
    """

    def __init__(self, *, duration_s: float = 40.0, transcript=None) -> None:
        self.duration_s = float(duration_s)
        self.transcript = list(transcript if transcript is not None else SAMPLE_TRANSCRIPT)
        self.calls: list[str] = []
        self.fail_plan: dict[str, int] = {}
        self._lock = threading.Lock()

    def _enter(self, op: str) -> None:
        with self._lock:
            self.calls.append(op)
            remaining = self.fail_plan.get(op, 0)
            if remaining > 0:
                self.fail_plan[op] = remaining - 1
                raise RuntimeError(f"{op} failed (planned)")

    def count(self, op: str) -> int:
        with self._lock:
            return sum(1 for c in self.calls if c == op)

    def download(self, url: str, dest_dir: Path) -> Path:
        self._enter("download")
        dest_dir.mkdir(parents=True, exist_ok=True)
        out = dest_dir / "source.mp4"
        out.write_bytes(b"fake-video:" + url.encode("utf-8"))
        return out

    def resolve_upload(self, object_key: str) -> Path:
        self._enter("resolve_upload")
        p = Path(get_settings().uploads_dir) / object_key
        p.parent.mkdir(parents=True, exist_ok=True)
        if not p.exists():
            p.write_bytes(b"fake-upload")
        return p

    def probe_duration(self, path: Path) -> float:
        self._enter("probe_duration")
        return self.duration_s

    def transcribe(self, path: Path, work_dir: Path) -> list[TranscriptSegment]:
        self._enter("transcribe")
        return list(self.transcript)

    def detect_scenes(self, path: Path) -> list[float]:
        self._enter("detect_scenes")
        return [9.1, 22.5]

    def render_clip(
        self, source: Path, start: float, end: float, captions: Path | None, out: Path
    ) -> Path:
        self._enter("render_clip")
        out.parent.mkdir(parents=True, exist_ok=True)
        if captions is not None:
            shutil.copyfile(captions, out)
        else:
            out.write_bytes(b"")
        return out
