from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from clipping_pipeline.jobs.errors import SubmissionError
from clipping_pipeline.jobs.models import SourceRef

_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,127}$")


class SourceIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["remote", "upload"]
    url: str | None = None
    object_key: str | None = None

    @model_validator(mode="after")
    def _check_reference(self) -> SourceIn:
        if self.kind == "remote":
            if not self.url or not re.match(r"^https?://", self.url):
                raise ValueError("remote source requires an http(s) url")
        elif not self.object_key:
            raise ValueError("upload source requires object_key")
        return self

    def to_ref(self) -> SourceRef:
        return SourceRef(kind=self.kind, url=self.url or "", object_key=self.object_key or "")


class JobSubmission(BaseModel):
    """
    Validated submission payload. Nothing is enqueued unless this parses.
    """

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    source: SourceIn
    target_duration_s: float = Field(default=60.0, ge=15.0, le=90.0)
    clip_count: int = Field(default=5, ge=1, le=10)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_id(self) -> JobSubmission:
        if self.id is not None and not _ID_RE.match(self.id):
            raise ValueError("id must be 1-128 chars of [A-Za-z0-9_.:-]")
        return self


def parse_submission(payload: dict[str, Any] | JobSubmission) -> JobSubmission:
    if isinstance(payload, JobSubmission):
        return payload
    try:
        return JobSubmission.model_validate(payload)
    except ValidationError as ex:
        msgs = [
            f"{'.'.join(str(x) for x in e.get('loc', ())) or 'body'}: {e.get('msg')}"
            for e in ex.errors()
        ]
        raise SubmissionError("; ".join(msgs)) from ex
