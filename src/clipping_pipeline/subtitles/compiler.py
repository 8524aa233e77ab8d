"""
Caption compiler: transcript segments + style preferences -> ASS script.

The output targets a 1080x1920 vertical canvas and is burned into the clip by
the render stage (ffmpeg `subtitles=` filter).
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from clipping_pipeline.jobs.models import TranscriptSegment, segments_in_window
from clipping_pipeline.subtitles.preferences import (
    FONT_SIZE_MAX,
    FONT_SIZE_MIN,
    SubtitlePreferences,
    check_ranges,
)
from clipping_pipeline.utils.io import atomic_write_text
from clipping_pipeline.utils.time import format_ass_timestamp, format_srt_timestamp

PLAY_RES_X = 1080
PLAY_RES_Y = 1920

ALIGNMENT = {"top": 8, "center": 5, "bottom": 2}

STYLE_FORMAT = (
    "Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, "
    "Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, "
    "Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding"
)
EVENT_FORMAT = "Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text"

FAST_CPS = 15.0
SLOW_CPS = 5.0


def opacity_to_alpha(opacity: float) -> str:
    """ASS alpha is transparency: opacity 1 -> "00", opacity 0 -> "FF"."""
    alpha = int(round((1.0 - float(opacity)) * 255))
    return f"{max(0, min(255, alpha)):02X}"


def encode_color(hex_color: str, opacity: float = 1.0) -> str:
    """
    "#RRGGBB" -> "&HAABBGGRR".
    """
    h = str(hex_color).lstrip("#")
    if len(h) != 6:
        raise ValueError(f"expected #RRGGBB, got {hex_color!r}")
    r, g, b = h[0:2], h[2:4], h[4:6]
    return f"&H{opacity_to_alpha(opacity)}{b}{g}{r}".upper()


def alignment_for(position: str) -> int:
    return ALIGNMENT.get(str(position), ALIGNMENT["bottom"])


def smart_line_break(text: str, max_chars: int) -> list[str]:
    """
    Greedy word wrap capped at two lines.

    More than two wrapped lines are folded into two halves (split at ceil(n/2)).
    Words longer than `max_chars` stay whole on their own line.
    """
    if len(text) <= int(max_chars):
        return [text]

    lines: list[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= int(max_chars):
            current = candidate
        else:
            if current:
                lines.append(current)
            current = word
    if current:
        lines.append(current)

    if len(lines) > 2:
        half = math.ceil(len(lines) / 2)
        return [" ".join(lines[:half]), " ".join(lines[half:])]
    return lines


def adjust_font_size(text: str, duration_s: float, base_size: int) -> int:
    """
    Shrink dense captions, grow sparse ones, within the allowed size range.
    """
    chars = len(text)
    cps = chars / duration_s if duration_s > 0 else math.inf
    if cps > FAST_CPS:
        return max(FONT_SIZE_MIN, int(base_size) - 4)
    if cps < SLOW_CPS:
        return min(FONT_SIZE_MAX, int(base_size) + 2)
    return int(base_size)


@dataclass(frozen=True, slots=True)
class CaptionEvent:
    start: float
    end: float
    text: str

    def render(self) -> str:
        return (
            f"Dialogue: 0,{format_ass_timestamp(self.start)},{format_ass_timestamp(self.end)},"
            f"Default,,0,0,0,,{self.text}"
        )


@dataclass(frozen=True, slots=True)
class CaptionScript:
    prefs: SubtitlePreferences
    events: tuple[CaptionEvent, ...] = field(default_factory=tuple)
    title: str = "Generated Subtitles"

    def style_line(self) -> str:
        p = self.prefs
        fields = [
            "Default",
            p.font,
            str(p.font_size),
            encode_color(p.font_color),
            encode_color(p.font_color),
            encode_color(p.outline_color),
            encode_color(p.background_color, p.background_opacity),
            "-1" if p.bold else "0",
            "-1" if p.italic else "0",
            "0",
            "0",
            "100",
            "100",
            "0",
            "0",
            "1",
            str(p.outline_width) if p.outline else "0",
            "1" if p.shadow else "0",
            str(alignment_for(p.position)),
            "10",
            "10",
            str(p.margin_vertical),
            "1",
        ]
        return "Style: " + ",".join(fields)

    def render(self) -> str:
        head = [
            "[Script Info]",
            f"Title: {self.title}",
            "ScriptType: v4.00+",
            "WrapStyle: 0",
            f"PlayResX: {PLAY_RES_X}",
            f"PlayResY: {PLAY_RES_Y}",
            "ScaledBorderAndShadow: yes",
            "",
            "[V4+ Styles]",
            f"Format: {STYLE_FORMAT}",
            self.style_line(),
            "",
            "[Events]",
            f"Format: {EVENT_FORMAT}",
        ]
        return "\n".join(head + [e.render() for e in self.events]) + "\n"


def _event_text(raw: str, start: float, end: float, prefs: SubtitlePreferences) -> str:
    if prefs.format == "karaoke":
        words = raw.split()
        per_word_cs = int(round((end - start) / len(words) * 100))
        return " ".join(f"{{\\k{per_word_cs}}}{w}" for w in words)
    text = "\\N".join(smart_line_break(raw, prefs.max_chars_per_line))
    if prefs.format == "progressive":
        return f"{{\\fad(200,200)}}{text}"
    return text


def compile_captions(
    segments: Iterable[TranscriptSegment],
    offset_s: float,
    prefs: SubtitlePreferences,
) -> CaptionScript:
    """
    Compile segments into a caption script, re-based by `offset_s`.

    Raises StylePreferencesError for out-of-range preferences. Blank segments
    produce no event.
    """
    check_ranges(prefs)
    events: list[CaptionEvent] = []
    for seg in segments:
        raw = str(seg.text).strip()
        if not raw:
            continue
        start = max(0.0, float(seg.start) - float(offset_s))
        end = max(0.0, float(seg.end) - float(offset_s))
        events.append(CaptionEvent(start=start, end=end, text=_event_text(raw, start, end, prefs)))
    return CaptionScript(prefs=prefs, events=tuple(events))


def compile_clip_captions(
    transcript: list[TranscriptSegment],
    clip_start: float,
    clip_end: float,
    prefs: SubtitlePreferences,
    *,
    auto_size: bool = True,
) -> CaptionScript:
    """
    Captions for one clip window: overlapping segments, optional font auto-sizing.
    """
    segs = segments_in_window(transcript, clip_start, clip_end)
    if auto_size and segs:
        text = " ".join(s.text.strip() for s in segs)
        size = adjust_font_size(text, float(clip_end) - float(clip_start), prefs.font_size)
        if size != prefs.font_size:
            prefs = prefs.model_copy(update={"font_size": size})
    return compile_captions(segs, clip_start, prefs)


def write_ass(script: CaptionScript, path: Path) -> Path:
    return atomic_write_text(Path(path), script.render())


def write_srt(segments: Iterable[TranscriptSegment], path: Path, *, offset_s: float = 0.0) -> Path:
    """
    Minimal SRT sidecar for the same clip window.
    """
    blocks: list[str] = []
    idx = 0
    for seg in segments:
        txt = str(seg.text).strip()
        if not txt:
            continue
        idx += 1
        st = format_srt_timestamp(max(0.0, seg.start - offset_s))
        en = format_srt_timestamp(max(0.0, seg.end - offset_s))
        blocks.append(f"{idx}\n{st} --> {en}\n{txt}\n")
    return atomic_write_text(Path(path), "\n".join(blocks))
