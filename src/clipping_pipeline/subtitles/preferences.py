from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from clipping_pipeline.jobs.errors import StylePreferencesError

FONT_SIZE_MIN, FONT_SIZE_MAX = 16, 48
OUTLINE_WIDTH_MIN, OUTLINE_WIDTH_MAX = 1, 5
MAX_CHARS_MIN, MAX_CHARS_MAX = 20, 60

_HEX = r"^#[0-9A-Fa-f]{6}$"


class SubtitlePreferences(BaseModel):
    """
    Caption style. Accepts snake_case or camelCase keys (the web client sends camelCase).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    position: Literal["top", "center", "bottom"] = "bottom"
    format: Literal["single-line", "multi-line", "karaoke", "progressive"] = "multi-line"
    font: str = Field(default="Inter", min_length=1)
    font_size: int = Field(default=32, ge=FONT_SIZE_MIN, le=FONT_SIZE_MAX, alias="fontSize")
    font_color: str = Field(default="#FFFFFF", pattern=_HEX, alias="fontColor")
    background_color: str = Field(default="#000000", pattern=_HEX, alias="backgroundColor")
    background_opacity: float = Field(default=0.85, ge=0.0, le=1.0, alias="backgroundOpacity")
    bold: bool = True
    italic: bool = False
    outline: bool = True
    outline_color: str = Field(default="#000000", pattern=_HEX, alias="outlineColor")
    outline_width: int = Field(
        default=3, ge=OUTLINE_WIDTH_MIN, le=OUTLINE_WIDTH_MAX, alias="outlineWidth"
    )
    shadow: bool = True
    shadow_color: str = Field(default="#000000", pattern=_HEX, alias="shadowColor")
    max_chars_per_line: int = Field(
        default=28, ge=MAX_CHARS_MIN, le=MAX_CHARS_MAX, alias="maxCharsPerLine"
    )
    margin_vertical: int = Field(default=80, ge=0, alias="marginVertical")


DEFAULT_PREFERENCES = SubtitlePreferences()


def _describe(err: dict[str, Any]) -> str:
    loc = ".".join(_NAME_OF_ALIAS.get(str(x), str(x)) for x in err.get("loc", ()))
    return f"{loc}: {err.get('msg', 'invalid value')}"


def parse_preferences(
    data: dict[str, Any] | SubtitlePreferences | None = None,
    *,
    base: SubtitlePreferences | None = None,
) -> SubtitlePreferences:
    """
    Validate a (possibly partial) preferences payload layered over `base`.

    Raises StylePreferencesError listing every out-of-range field.
    """
    if isinstance(data, SubtitlePreferences):
        check_ranges(data)
        return data
    merged = (base or DEFAULT_PREFERENCES).model_dump(by_alias=False)
    for k, v in dict(data or {}).items():
        field = _field_name(k)
        if field is not None:
            merged[field] = v
    try:
        return SubtitlePreferences.model_validate(
            {_ALIAS_OF.get(k, k): v for k, v in merged.items()}
        )
    except ValidationError as ex:
        raise StylePreferencesError([_describe(e) for e in ex.errors()]) from ex


def check_ranges(prefs: SubtitlePreferences) -> None:
    """
    Range check for instances that skipped validation (e.g. model_construct).
    """
    problems: list[str] = []
    if not FONT_SIZE_MIN <= int(prefs.font_size) <= FONT_SIZE_MAX:
        problems.append(f"font_size must be within {FONT_SIZE_MIN}-{FONT_SIZE_MAX}")
    if not 0.0 <= float(prefs.background_opacity) <= 1.0:
        problems.append("background_opacity must be within 0-1")
    if not OUTLINE_WIDTH_MIN <= int(prefs.outline_width) <= OUTLINE_WIDTH_MAX:
        problems.append(f"outline_width must be within {OUTLINE_WIDTH_MIN}-{OUTLINE_WIDTH_MAX}")
    if not MAX_CHARS_MIN <= int(prefs.max_chars_per_line) <= MAX_CHARS_MAX:
        problems.append(f"max_chars_per_line must be within {MAX_CHARS_MIN}-{MAX_CHARS_MAX}")
    if problems:
        raise StylePreferencesError(problems)


_ALIAS_OF: dict[str, str] = {
    name: (f.alias or name) for name, f in SubtitlePreferences.model_fields.items()
}
_NAME_OF_ALIAS: dict[str, str] = {alias: name for name, alias in _ALIAS_OF.items()}


def _field_name(key: str) -> str | None:
    if key in SubtitlePreferences.model_fields:
        return key
    return _NAME_OF_ALIAS.get(key)
