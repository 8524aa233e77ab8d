from __future__ import annotations

from typing import Any

from clipping_pipeline.jobs.errors import MergeConflict
from clipping_pipeline.jobs.models import Stage

# Fields of the accumulated job data each stage may write.
STAGE_FIELDS: dict[Stage, frozenset[str]] = {
    Stage.ingest: frozenset({"source_path", "source_duration_s"}),
    Stage.transcribe: frozenset({"transcript", "language"}),
    Stage.detect_scenes: frozenset({"scenes"}),
    Stage.rank: frozenset({"clips"}),
    Stage.render: frozenset({"rendered"}),
    Stage.generate_texts: frozenset({"texts"}),
    Stage.export: frozenset({"exports", "manifest_path"}),
}


def owner_of(field: str) -> Stage | None:
    for stage, fields in STAGE_FIELDS.items():
        if field in fields:
            return stage
    return None


def merge_stage_output(
    stage: Stage, data: dict[str, Any], output: dict[str, Any] | None
) -> dict[str, Any]:
    """
    Return `data` plus `output`; never mutates `data`.

    Raises MergeConflict when `output` names a field `stage` does not own, or
    would replace an existing value with a different one. Rewriting an equal
    value is accepted.
    """
    owned = STAGE_FIELDS[stage]
    merged = dict(data)
    for key, value in (output or {}).items():
        if key not in owned:
            owner = owner_of(key)
            reason = f"field owned by {owner.value}" if owner else "unknown field"
            raise MergeConflict(stage.value, key, reason)
        if key in merged and merged[key] != value:
            raise MergeConflict(stage.value, key, "overwrite of an existing field")
        merged[key] = value
    return merged
