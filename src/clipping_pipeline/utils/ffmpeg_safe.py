from __future__ import annotations

import subprocess
from pathlib import Path

from clipping_pipeline.config import get_settings
from clipping_pipeline.utils.log import logger

_FORBIDDEN_FLAGS = {
    "-filter_script",
    "-filter_script:v",
    "-filter_script:a",
    "-stats_file",
}


class ToolError(RuntimeError):
    """An external binary (ffmpeg, ffprobe, yt-dlp, whisper) failed."""

    def __init__(self, message: str, *, tool: str = "", stderr_tail: str = "") -> None:
        self.tool = tool
        self.stderr_tail = stderr_tail
        super().__init__(message)


class FFmpegError(ToolError):
    pass


def _tail(s: str, n: int = 4000) -> str:
    s = str(s or "")
    return s if len(s) <= n else s[-n:]


def _validate_args(argv: list[str]) -> None:
    for a in argv:
        if a in _FORBIDDEN_FLAGS:
            raise FFmpegError(f"Forbidden ffmpeg/ffprobe flag: {a}", tool=argv[0])


def run_tool(
    argv: list[str],
    *,
    timeout_s: float | None = None,
    error_cls: type[ToolError] = ToolError,
) -> subprocess.CompletedProcess[str]:
    """
    Run an external command, capturing output. Failures raise `error_cls`
    carrying the tail of stderr.
    """
    tool = Path(argv[0]).name if argv else ""
    logger.debug("tool_run", tool=tool, argc=len(argv))
    try:
        return subprocess.run(
            argv,
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired as ex:
        raise error_cls(f"{tool} timed out after {timeout_s}s", tool=tool) from ex
    except subprocess.CalledProcessError as ex:
        stderr = ex.stderr if isinstance(ex.stderr, str) else ""
        raise error_cls(
            f"{tool} failed (exit={ex.returncode})\nstderr_tail={_tail(stderr)}",
            tool=tool,
            stderr_tail=_tail(stderr),
        ) from ex
    except OSError as ex:
        raise error_cls(f"{tool} could not be started: {ex}", tool=tool) from ex


def run_ffmpeg(argv: list[str], *, timeout_s: float | None = None) -> None:
    _validate_args(argv)
    run_tool(argv, timeout_s=timeout_s, error_cls=FFmpegError)


def ffprobe_duration_seconds(path: Path, *, timeout_s: float = 20) -> float:
    s = get_settings()
    argv = [
        str(s.ffprobe_bin),
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]
    _validate_args(argv)
    p = run_tool(argv, timeout_s=timeout_s, error_cls=FFmpegError)
    try:
        return float(p.stdout.strip())
    except ValueError as ex:
        raise FFmpegError(f"ffprobe returned no duration for {path}", tool="ffprobe") from ex


def escape_filter_path(path: Path) -> str:
    """
    Escape a filesystem path for use inside an ffmpeg filtergraph argument.
    """
    s = str(path).replace("\\", "/")
    return s.replace(":", r"\:").replace("'", r"\'")
