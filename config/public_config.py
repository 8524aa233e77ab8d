from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_app_root() -> Path:
    """
    Default application root.

    Docker images mount the app at /app; local runs use the working directory.
    """
    env = os.environ.get("APP_ROOT")
    if env:
        return Path(env).resolve()
    if Path("/app").exists():
        return Path("/app").resolve()
    return Path.cwd().resolve()


class PublicConfig(BaseSettings):
    """
    Non-sensitive config with safe defaults.

    Loaded from (in order):
      - process env
      - optional `.env` file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- core paths ---
    app_root: Path = Field(default_factory=_default_app_root, alias="APP_ROOT")
    output_dir: Path = Field(
        default_factory=lambda: (Path.cwd() / "Output").resolve(), alias="CLIPS_OUTPUT_DIR"
    )
    log_dir: Path = Field(
        default_factory=lambda: (Path.cwd() / "logs").resolve(), alias="CLIPS_LOG_DIR"
    )
    # Runtime-only state directory (job DB, reprocess cache).
    # If unset, defaults to "<CLIPS_OUTPUT_DIR>/_state".
    state_dir: Path | None = Field(default=None, alias="CLIPS_STATE_DIR")
    jobs_db_name: str = Field(default="jobs.db", alias="CLIPS_JOBS_DB_NAME")
    uploads_dir: Path | None = Field(default=None, alias="CLIPS_UPLOADS_DIR")

    # --- tool binaries ---
    ffmpeg_bin: str = Field(default="ffmpeg", alias="FFMPEG_BIN")
    ffprobe_bin: str = Field(default="ffprobe", alias="FFPROBE_BIN")
    ytdlp_bin: str = Field(default="yt-dlp", alias="YTDLP_BIN")
    whisper_bin: str = Field(default="whisper", alias="WHISPER_BIN")
    whisper_model: str = Field(default="base", alias="WHISPER_MODEL")

    # --- stage execution ---
    stage_concurrency: int = Field(default=2, alias="STAGE_CONCURRENCY")
    # Optional per-stage overrides, e.g. "render=1,transcribe=1"
    stage_concurrency_overrides: str = Field(default="", alias="STAGE_CONCURRENCY_OVERRIDES")
    stage_rate_max: int = Field(default=10, alias="STAGE_RATE_MAX")
    stage_rate_window_s: float = Field(default=60.0, alias="STAGE_RATE_WINDOW_S")
    stage_max_attempts: int = Field(default=3, alias="STAGE_MAX_ATTEMPTS")
    stage_backoff_base_s: float = Field(default=5.0, alias="STAGE_BACKOFF_BASE_S")
    stage_timeout_s: float = Field(default=1800.0, alias="STAGE_TIMEOUT_S")
    stage_poll_interval_s: float = Field(default=0.25, alias="STAGE_POLL_INTERVAL_S")

    # --- retention ---
    retain_completed_hours: float = Field(default=24.0, alias="RETAIN_COMPLETED_HOURS")
    retain_completed_count: int = Field(default=100, alias="RETAIN_COMPLETED_COUNT")
    retain_failed_days: float = Field(default=7.0, alias="RETAIN_FAILED_DAYS")
    retain_failed_count: int = Field(default=200, alias="RETAIN_FAILED_COUNT")
    cleanup_interval_s: float = Field(default=3600.0, alias="CLEANUP_INTERVAL_S")

    # --- reprocess cache ---
    reprocess_ttl_days: int = Field(default=30, alias="REPROCESS_TTL_DAYS")
    # "auto" uses redis when REDIS_URL is set, otherwise the local sqlite table.
    reprocess_cache_backend: str = Field(default="auto", alias="REPROCESS_CACHE_BACKEND")

    # --- render ---
    render_width: int = Field(default=1080, alias="RENDER_WIDTH")
    render_height: int = Field(default=1920, alias="RENDER_HEIGHT")
    render_preset: str = Field(default="veryfast", alias="RENDER_PRESET")
    min_clip_s: float = Field(default=5.0, alias="MIN_CLIP_S")

    # --- logging ---
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_max_bytes: int = Field(default=5 * 1024 * 1024, alias="LOG_MAX_BYTES")
    log_backup_count: int = Field(default=3, alias="LOG_BACKUP_COUNT")

    # --- web ---
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    def concurrency_for(self, stage: str) -> int:
        for part in str(self.stage_concurrency_overrides or "").split(","):
            name, _, value = part.partition("=")
            if name.strip() == stage and value.strip().isdigit():
                return max(1, int(value.strip()))
        return max(1, int(self.stage_concurrency))
