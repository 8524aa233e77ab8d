from __future__ import annotations

import re
from collections import Counter
from pathlib import Path
from typing import Any

from clipping_pipeline.config import get_settings
from clipping_pipeline.jobs.models import Clip, Stage, TranscriptSegment, segments_in_window
from clipping_pipeline.stages.context import StageContext, StageHandler
from clipping_pipeline.stages.media import MediaOps
from clipping_pipeline.stages.ranking import select_clips
from clipping_pipeline.subtitles.compiler import compile_clip_captions, write_ass, write_srt
from clipping_pipeline.subtitles.preferences import parse_preferences
from clipping_pipeline.utils.io import write_json
from clipping_pipeline.utils.log import logger

_WORD_RE = re.compile(r"[A-Za-zÀ-ÿ0-9']+")
_STOPWORDS = frozenset(
    """
    about after again because before being could doing going really should their there
    these thing things think those through where which while would yeah gonna wanna
    """.split()
)


def hashtags_for(text: str, *, limit: int = 5) -> list[str]:
    words = [w.lower() for w in _WORD_RE.findall(text)]
    counts = Counter(w for w in words if len(w) >= 5 and w not in _STOPWORDS)
    return [f"#{w}" for w, _ in counts.most_common(limit)]


def description_for(segments: list[TranscriptSegment], *, max_chars: int = 200) -> str:
    text = " ".join(s.text.strip() for s in segments).strip()
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars].rsplit(" ", 1)[0]
    return cut + "..."


class BuiltinStages:
    """
    Default handler for every stage, backed by a MediaOps implementation.
    """

    def __init__(self, media: MediaOps) -> None:
        self.media = media

    def handlers(self) -> dict[Stage, StageHandler]:
        return {
            Stage.ingest: self.ingest,
            Stage.transcribe: self.transcribe,
            Stage.detect_scenes: self.detect_scenes,
            Stage.rank: self.rank,
            Stage.render: self.render,
            Stage.generate_texts: self.generate_texts,
            Stage.export: self.export,
        }

    def ingest(self, ctx: StageContext) -> dict[str, Any]:
        if ctx.source.kind == "remote":
            path = self.media.download(ctx.source.url, ctx.work_dir / "source")
        else:
            path = self.media.resolve_upload(ctx.source.object_key)
        duration = float(self.media.probe_duration(path))
        return {"source_path": str(path), "source_duration_s": duration}

    def transcribe(self, ctx: StageContext) -> dict[str, Any]:
        segs = self.media.transcribe(Path(ctx.require("source_path")), ctx.work_dir)
        return {"transcript": [s.to_dict() for s in segs]}

    def detect_scenes(self, ctx: StageContext) -> dict[str, Any]:
        cuts = self.media.detect_scenes(Path(ctx.require("source_path")))
        return {"scenes": [float(t) for t in cuts]}

    def rank(self, ctx: StageContext) -> dict[str, Any]:
        clips = select_clips(
            ctx.transcript(),
            source_duration_s=float(ctx.require("source_duration_s")),
            target_s=float(ctx.target_duration_s),
            count=int(ctx.clip_count),
            scenes=list(ctx.data.get("scenes") or []),
            min_s=float(get_settings().min_clip_s),
        )
        logger.info("clips_ranked", count=len(clips))
        return {"clips": [c.to_dict() for c in clips]}

    def render(self, ctx: StageContext) -> dict[str, Any]:
        prefs = parse_preferences(ctx.metadata.get("subtitle_preferences"))
        source = Path(ctx.require("source_path"))
        transcript = ctx.transcript()
        rendered: list[dict[str, Any]] = []
        for clip in ctx.clips():
            rendered.append(render_one(self.media, source, transcript, clip, prefs, ctx.work_dir))
        return {"rendered": rendered}

    def generate_texts(self, ctx: StageContext) -> dict[str, Any]:
        texts: dict[str, dict[str, Any]] = {}
        for clip in ctx.clips():
            segs = list(clip.transcript)
            texts[clip.id] = {
                "title": clip.title,
                "description": description_for(segs),
                "hashtags": hashtags_for(" ".join(s.text for s in segs)),
            }
        return {"texts": texts}

    def export(self, ctx: StageContext) -> dict[str, Any]:
        rendered = {r["id"]: r for r in ctx.data.get("rendered") or []}
        texts = ctx.data.get("texts") or {}
        exports: list[dict[str, Any]] = []
        for clip in ctx.clips():
            r = rendered.get(clip.id, {})
            exports.append(
                {
                    "id": clip.id,
                    "uri": Path(r.get("video_path") or "").resolve().as_uri() if r.get("video_path") else "",
                    **texts.get(clip.id, {}),
                }
            )
        manifest = write_json(ctx.work_dir / "manifest.json", {"job_id": ctx.job_id, "clips": exports})
        return {"exports": exports, "manifest_path": str(manifest)}


def render_one(
    media: MediaOps,
    source: Path,
    transcript: list[TranscriptSegment],
    clip: Clip,
    prefs: Any,
    work_dir: Path,
) -> dict[str, Any]:
    """
    Compile captions for one clip window and render it. Shared with reprocessing.
    """
    script = compile_clip_captions(transcript, clip.start, clip.end, prefs)
    ass = write_ass(script, work_dir / "captions" / f"{clip.id}.ass")
    srt = write_srt(
        segments_in_window(transcript, clip.start, clip.end),
        work_dir / "captions" / f"{clip.id}.srt",
        offset_s=clip.start,
    )
    out = media.render_clip(source, clip.start, clip.end, ass, work_dir / "clips" / f"{clip.id}.mp4")
    return {
        "id": clip.id,
        "video_path": str(out),
        "caption_path": str(ass),
        "srt_path": str(srt),
        "font_size": script.prefs.font_size,
    }


def build_result(data: dict[str, Any]) -> dict[str, Any]:
    """
    Aggregate result: the ranked clips joined with render/text/export outputs.
    """
    rendered = {r["id"]: r for r in data.get("rendered") or []}
    texts = data.get("texts") or {}
    exports = {e["id"]: e for e in data.get("exports") or []}
    clips: list[dict[str, Any]] = []
    for raw in data.get("clips") or []:
        c = Clip.from_dict(raw)
        r = rendered.get(c.id, {})
        t = texts.get(c.id, {})
        c = c.with_changes(
            video_path=str(r.get("video_path") or ""),
            caption_path=str(r.get("caption_path") or ""),
            description=str(t.get("description") or ""),
            hashtags=tuple(t.get("hashtags") or ()),
            export_uri=str(exports.get(c.id, {}).get("uri") or ""),
        )
        d = c.to_dict()
        d["duration"] = round(c.duration, 3)
        clips.append(d)
    return {
        "clips": clips,
        "source_duration_s": data.get("source_duration_s"),
        "manifest_path": data.get("manifest_path"),
    }
