from __future__ import annotations


class SubmissionError(ValueError):
    """Submission payload failed validation; nothing was enqueued."""


class StylePreferencesError(ValueError):
    """Caption style preferences are out of range."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "invalid subtitle preferences")


class JobNotFound(KeyError):
    def __init__(self, job_id: str) -> None:
        self.job_id = str(job_id)
        super().__init__(self.job_id)

    def __str__(self) -> str:
        return f"job not found: {self.job_id}"


class StageError(RuntimeError):
    """Transient failure of a stage's external operation (retried)."""

    def __init__(self, stage: str, message: str) -> None:
        self.stage = str(stage)
        super().__init__(message)


class StageTimeout(StageError):
    def __init__(self, stage: str, timeout_s: float) -> None:
        self.timeout_s = float(timeout_s)
        super().__init__(stage, f"{stage} timed out after {timeout_s:.1f}s")


class MergeConflict(RuntimeError):
    """A stage tried to write a field it does not own, or to overwrite one."""

    def __init__(self, stage: str, field: str, reason: str) -> None:
        self.stage = str(stage)
        self.field = str(field)
        super().__init__(f"{stage}: {reason} ({field})")


class IllegalTransition(RuntimeError):
    pass
