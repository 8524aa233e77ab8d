"""
External media operations (download, transcription, scene cuts, rendering).

The pipeline only depends on the `MediaOps` protocol; `SubprocessMediaOps`
shells out to yt-dlp, the whisper CLI and ffmpeg/ffprobe.
"""

from __future__ import annotations

import json
import re
import shutil
from pathlib import Path
from typing import Protocol

from clipping_pipeline.config import get_settings
from clipping_pipeline.jobs.models import TranscriptSegment
from clipping_pipeline.utils.ffmpeg_safe import (
    ToolError,
    escape_filter_path,
    ffprobe_duration_seconds,
    run_ffmpeg,
    run_tool,
)
from clipping_pipeline.utils.log import logger

_PTS_RE = re.compile(r"pts_time:(\d+(?:\.\d+)?)")


class MediaOps(Protocol):
    def download(self, url: str, dest_dir: Path) -> Path: ...

    def resolve_upload(self, object_key: str) -> Path: ...

    def probe_duration(self, path: Path) -> float: ...

    def transcribe(self, path: Path, work_dir: Path) -> list[TranscriptSegment]: ...

    def detect_scenes(self, path: Path) -> list[float]: ...

    def render_clip(
        self, source: Path, start: float, end: float, captions: Path | None, out: Path
    ) -> Path: ...


class SubprocessMediaOps:
    def __init__(self, *, timeout_s: float | None = None, scene_threshold: float = 0.4) -> None:
        s = get_settings()
        self.timeout_s = float(timeout_s if timeout_s is not None else s.stage_timeout_s)
        self.scene_threshold = float(scene_threshold)

    def download(self, url: str, dest_dir: Path) -> Path:
        s = get_settings()
        dest_dir.mkdir(parents=True, exist_ok=True)
        out = dest_dir / "source.mp4"
        run_tool(
            [
                str(s.ytdlp_bin),
                "--no-playlist",
                "-f",
                "bv*[ext=mp4]+ba[ext=m4a]/b[ext=mp4]/b",
                "--merge-output-format",
                "mp4",
                "-o",
                str(out),
                url,
            ],
            timeout_s=self.timeout_s,
        )
        if not out.exists():
            raise ToolError(f"download produced no file at {out}", tool=str(s.ytdlp_bin))
        return out

    def resolve_upload(self, object_key: str) -> Path:
        s = get_settings()
        root = Path(s.uploads_dir or (Path(s.app_root) / "uploads")).resolve()
        p = (root / object_key).resolve()
        try:
            p.relative_to(root)
        except ValueError as ex:
            raise ToolError(f"upload key escapes uploads dir: {object_key}") from ex
        if not p.exists():
            raise ToolError(f"uploaded object not found: {object_key}")
        return p

    def probe_duration(self, path: Path) -> float:
        return ffprobe_duration_seconds(path, timeout_s=min(60.0, self.timeout_s))

    def transcribe(self, path: Path, work_dir: Path) -> list[TranscriptSegment]:
        s = get_settings()
        out_dir = work_dir / "transcript"
        out_dir.mkdir(parents=True, exist_ok=True)
        run_tool(
            [
                str(s.whisper_bin),
                str(path),
                "--model",
                str(s.whisper_model),
                "--output_format",
                "json",
                "--output_dir",
                str(out_dir),
            ],
            timeout_s=self.timeout_s,
        )
        out = out_dir / f"{path.stem}.json"
        if not out.exists():
            raise ToolError(f"transcription produced no output at {out}", tool=str(s.whisper_bin))
        data = json.loads(out.read_text(encoding="utf-8"))
        segs = [
            TranscriptSegment(start=float(x["start"]), end=float(x["end"]), text=str(x["text"]).strip())
            for x in data.get("segments", [])
        ]
        logger.info("transcribed", segments=len(segs), language=data.get("language"))
        return segs

    def detect_scenes(self, path: Path) -> list[float]:
        s = get_settings()
        p = run_tool(
            [
                str(s.ffmpeg_bin),
                "-hide_banner",
                "-i",
                str(path),
                "-filter:v",
                f"select='gt(scene,{self.scene_threshold})',showinfo",
                "-f",
                "null",
                "-",
            ],
            timeout_s=self.timeout_s,
        )
        return sorted({round(float(m), 3) for m in _PTS_RE.findall(p.stderr or "")})

    def render_clip(
        self, source: Path, start: float, end: float, captions: Path | None, out: Path
    ) -> Path:
        s = get_settings()
        w, h = int(s.render_width), int(s.render_height)
        vf = [
            f"scale={w}:{h}:force_original_aspect_ratio=decrease",
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:black",
        ]
        if captions is not None:
            vf.append(f"subtitles='{escape_filter_path(captions)}'")
        out.parent.mkdir(parents=True, exist_ok=True)
        run_ffmpeg(
            [
                str(s.ffmpeg_bin),
                "-y",
                "-ss",
                f"{float(start):.3f}",
                "-i",
                str(source),
                "-t",
                f"{max(0.0, float(end) - float(start)):.3f}",
                "-vf",
                ",".join(vf),
                "-af",
                "loudnorm=I=-14:LRA=11:TP=-1.5",
                "-c:v",
                "libx264",
                "-preset",
                str(s.render_preset),
                "-crf",
                "20",
                "-pix_fmt",
                "yuv420p",
                "-c:a",
                "aac",
                "-b:a",
                "160k",
                "-movflags",
                "+faststart",
                str(out),
            ],
            timeout_s=self.timeout_s,
        )
        return out


def tools_available() -> dict[str, bool]:
    s = get_settings()
    return {
        name: shutil.which(str(binary)) is not None
        for name, binary in (
            ("ffmpeg", s.ffmpeg_bin),
            ("ffprobe", s.ffprobe_bin),
            ("yt-dlp", s.ytdlp_bin),
            ("whisper", s.whisper_bin),
        )
    }
