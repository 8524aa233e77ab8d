from __future__ import annotations

import pytest

from clipping_pipeline.jobs.errors import StylePreferencesError
from clipping_pipeline.subtitles.preferences import (
    DEFAULT_PREFERENCES,
    SubtitlePreferences,
    check_ranges,
    parse_preferences,
)


def test_defaults() -> None:
    p = parse_preferences(None)
    assert p == DEFAULT_PREFERENCES
    assert p.position == "bottom"
    assert p.format == "multi-line"
    assert p.font_size == 32
    assert p.max_chars_per_line == 28


def test_font_size_60_is_rejected() -> None:
    with pytest.raises(StylePreferencesError) as ei:
        parse_preferences({"fontSize": 60})
    assert any("font_size" in msg for msg in ei.value.problems)


@pytest.mark.parametrize(
    "payload",
    [
        {"font_size": 15},
        {"backgroundOpacity": 1.5},
        {"outline_width": 0},
        {"outlineWidth": 6},
        {"maxCharsPerLine": 19},
        {"max_chars_per_line": 61},
        {"fontColor": "white"},
        {"position": "middle"},
        {"format": "scroll"},
    ],
)
def test_out_of_range_values_are_rejected(payload: dict) -> None:
    with pytest.raises(StylePreferencesError):
        parse_preferences(payload)


def test_camel_and_snake_case_keys_merge_over_defaults() -> None:
    p = parse_preferences({"fontSize": 40, "font_color": "#FFCC00", "position": "top"})
    assert p.font_size == 40
    assert p.font_color == "#FFCC00"
    assert p.position == "top"
    assert p.outline_width == DEFAULT_PREFERENCES.outline_width


def test_partial_payload_layers_over_base() -> None:
    base = parse_preferences({"fontSize": 24, "bold": False})
    p = parse_preferences({"italic": True}, base=base)
    assert (p.font_size, p.bold, p.italic) == (24, False, True)


def test_unknown_keys_are_ignored() -> None:
    assert parse_preferences({"sparkles": True}) == DEFAULT_PREFERENCES


def test_several_problems_are_reported_together() -> None:
    with pytest.raises(StylePreferencesError) as ei:
        parse_preferences({"fontSize": 99, "outlineWidth": 9})
    assert len(ei.value.problems) == 2


def test_check_ranges_on_unvalidated_instance() -> None:
    bad = SubtitlePreferences.model_construct(
        **{**DEFAULT_PREFERENCES.model_dump(), "max_chars_per_line": 5}
    )
    with pytest.raises(StylePreferencesError):
        check_ranges(bad)
    check_ranges(DEFAULT_PREFERENCES)
