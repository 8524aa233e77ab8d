from __future__ import annotations

from clipping_pipeline.jobs.models import TranscriptSegment
from clipping_pipeline.stages.ranking import select_clips
from tests._helpers.media import SAMPLE_TRANSCRIPT


def test_clips_do_not_overlap_and_respect_bounds() -> None:
    clips = select_clips(SAMPLE_TRANSCRIPT, source_duration_s=40.0, target_s=15.0, count=3)
    assert 1 <= len(clips) <= 3
    for a, b in zip(clips, clips[1:]):
        assert a.end <= b.start
    for c in clips:
        assert 0.0 <= c.start < c.end <= 40.0
        assert c.duration >= 5.0
        assert c.transcript
        assert c.title


def test_clip_ids_are_sequential_by_start() -> None:
    clips = select_clips(SAMPLE_TRANSCRIPT, source_duration_s=40.0, target_s=15.0, count=3)
    assert [c.id for c in clips] == [f"clip-{i:02d}" for i in range(1, len(clips) + 1)]
    assert [c.start for c in clips] == sorted(c.start for c in clips)


def test_count_is_an_upper_bound() -> None:
    clips = select_clips(SAMPLE_TRANSCRIPT, source_duration_s=40.0, target_s=15.0, count=1)
    assert len(clips) == 1


def test_empty_transcript_falls_back_to_uniform_windows() -> None:
    clips = select_clips([], source_duration_s=50.0, target_s=20.0, count=5)
    assert [(c.start, c.end) for c in clips] == [(0.0, 20.0), (20.0, 40.0), (40.0, 50.0)]
    assert clips[0].title == "Clip 1"


def test_short_windows_are_dropped() -> None:
    clips = select_clips([], source_duration_s=23.0, target_s=20.0, count=5, min_s=5.0)
    assert [(c.start, c.end) for c in clips] == [(0.0, 20.0)]


def test_long_titles_are_truncated() -> None:
    seg = TranscriptSegment(0.0, 12.0, "one two three four five six seven eight nine ten")
    clips = select_clips([seg], source_duration_s=12.0, target_s=15.0, count=1)
    assert clips[0].title == "one two three four five six seven eight..."
