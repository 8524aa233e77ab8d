"""
Heuristic clip selection over a transcript.

Candidate windows start at a segment start and end at a segment end, so cuts
land in the gaps between speech. Windows are scored by speech density, how
close they are to the target duration, and whether their edges sit on a
silence gap or a scene cut.
"""

from __future__ import annotations

from dataclasses import dataclass

from clipping_pipeline.jobs.models import Clip, TranscriptSegment, segments_in_window

GAP_MIN_S = 0.3
SCENE_SNAP_S = 0.5


@dataclass(frozen=True, slots=True)
class Window:
    start: float
    end: float
    score: float

    def overlaps(self, other: Window) -> bool:
        return self.start < other.end and other.start < self.end


def _gap_before(segments: list[TranscriptSegment], i: int) -> float:
    if i == 0:
        return segments[0].start
    return max(0.0, segments[i].start - segments[i - 1].end)


def _gap_after(segments: list[TranscriptSegment], j: int, source_end: float) -> float:
    if j == len(segments) - 1:
        return max(0.0, source_end - segments[j].end)
    return max(0.0, segments[j + 1].start - segments[j].end)


def _near_scene(t: float, scenes: list[float]) -> bool:
    return any(abs(t - s) <= SCENE_SNAP_S for s in scenes)


def score_window(
    segments: list[TranscriptSegment],
    i: int,
    j: int,
    *,
    target_s: float,
    scenes: list[float],
    source_end: float,
) -> float:
    start, end = segments[i].start, segments[j].end
    dur = max(1e-6, end - start)
    words = sum(len(s.text.split()) for s in segments[i : j + 1])
    density = min(1.0, (words / dur) / 3.0)
    fit = max(0.0, 1.0 - abs(dur - target_s) / target_s)
    edges = 0.0
    if _gap_before(segments, i) >= GAP_MIN_S:
        edges += 0.5
    if _gap_after(segments, j, source_end) >= GAP_MIN_S:
        edges += 0.5
    if _near_scene(start, scenes):
        edges += 0.25
    return round(0.5 * density + 0.35 * fit + 0.15 * edges, 6)


def candidate_windows(
    segments: list[TranscriptSegment],
    *,
    target_s: float,
    scenes: list[float],
    source_end: float,
    min_s: float,
) -> list[Window]:
    out: list[Window] = []
    max_s = target_s * 1.25
    for i in range(len(segments)):
        best: Window | None = None
        for j in range(i, len(segments)):
            dur = segments[j].end - segments[i].start
            if dur > max_s:
                break
            if dur < min_s:
                continue
            w = Window(
                start=segments[i].start,
                end=segments[j].end,
                score=score_window(
                    segments, i, j, target_s=target_s, scenes=scenes, source_end=source_end
                ),
            )
            if best is None or w.score > best.score:
                best = w
        if best is not None:
            out.append(best)
    return out


def _uniform_windows(source_end: float, target_s: float, count: int) -> list[Window]:
    out: list[Window] = []
    t = 0.0
    while t < source_end and len(out) < count:
        out.append(Window(start=t, end=min(source_end, t + target_s), score=0.0))
        t += target_s
    return out


def _title_for(segments: list[TranscriptSegment], n: int) -> str:
    words = " ".join(s.text.strip() for s in segments).split()
    if not words:
        return f"Clip {n}"
    head = " ".join(words[:8])
    return head if len(words) <= 8 else head + "..."


def select_clips(
    transcript: list[TranscriptSegment],
    *,
    source_duration_s: float,
    target_s: float,
    count: int,
    scenes: list[float] | None = None,
    min_s: float = 5.0,
) -> list[Clip]:
    """
    Top `count` non-overlapping windows, clamped to the source and ordered by
    start time. Windows shorter than `min_s` are dropped.
    """
    segs = sorted(transcript, key=lambda s: (s.start, s.end))
    source_end = float(source_duration_s) if source_duration_s > 0 else (segs[-1].end if segs else 0.0)
    cands = candidate_windows(
        segs, target_s=float(target_s), scenes=list(scenes or []), source_end=source_end, min_s=min_s
    )
    if not cands:
        cands = _uniform_windows(source_end, float(target_s), int(count))

    chosen: list[Window] = []
    for w in sorted(cands, key=lambda w: (-w.score, w.start)):
        if len(chosen) >= int(count):
            break
        if any(w.overlaps(c) for c in chosen):
            continue
        chosen.append(w)

    clips: list[Clip] = []
    for w in sorted(chosen, key=lambda w: w.start):
        start = max(0.0, w.start)
        end = min(source_end, w.end) if source_end > 0 else w.end
        if end - start < min_s:
            continue
        n = len(clips) + 1
        window_segs = segments_in_window(segs, start, end)
        clips.append(
            Clip(
                id=f"clip-{n:02d}",
                start=round(start, 3),
                end=round(end, 3),
                title=_title_for(window_segs, n),
                score=w.score,
                transcript=tuple(window_segs),
            )
        )
    return clips
