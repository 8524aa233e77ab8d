from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import SecretStr

from .public_config import PublicConfig
from .secret_config import SecretConfig


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class Settings:
    """
    Merged settings view (dot-access).

    Precedence:
      - secrets override public when names overlap
    """

    public: PublicConfig
    secret: SecretConfig

    def __getattr__(self, name: str) -> Any:
        if name in type(self.secret).model_fields:
            return getattr(self.secret, name)
        return getattr(self.public, name)

    def resolved_state_dir(self) -> Path:
        if self.public.state_dir is not None:
            return Path(self.public.state_dir)
        return Path(self.public.output_dir) / "_state"

    def jobs_db_path(self) -> Path:
        return self.resolved_state_dir() / str(self.public.jobs_db_name)

    def api_token_value(self) -> str:
        tok = self.secret.api_token
        return tok.get_secret_value() if tok is not None else ""


def _validate(s: Settings) -> None:
    p = s.public
    problems: list[str] = []
    if int(p.stage_max_attempts) < 1:
        problems.append("STAGE_MAX_ATTEMPTS must be >= 1")
    if float(p.stage_backoff_base_s) < 0:
        problems.append("STAGE_BACKOFF_BASE_S must be >= 0")
    if int(p.stage_rate_max) < 1 or float(p.stage_rate_window_s) <= 0:
        problems.append("STAGE_RATE_MAX/STAGE_RATE_WINDOW_S must be positive")
    if str(p.reprocess_cache_backend).lower() not in {"auto", "local", "redis"}:
        problems.append("REPROCESS_CACHE_BACKEND must be one of auto|local|redis")
    if str(p.reprocess_cache_backend).lower() == "redis" and not s.secret.redis_url:
        problems.append("REPROCESS_CACHE_BACKEND=redis requires REDIS_URL")
    if problems:
        raise ConfigError("Invalid configuration: " + "; ".join(problems))


def get_safe_config_report() -> dict[str, Any]:
    """
    Deterministic, non-sensitive config report.

    - Public values are included (paths are stringified)
    - Secret values are NEVER included; only SET/UNSET markers
    """
    s = get_settings()

    pub_s: dict[str, Any] = {}
    for k, v in s.public.model_dump().items():
        pub_s[k] = str(v) if hasattr(v, "__fspath__") else v

    sec: dict[str, str] = {}
    for k in sorted(type(s.secret).model_fields.keys()):
        v = getattr(s.secret, k, None)
        if v is None:
            sec[k] = "UNSET"
        elif isinstance(v, SecretStr):
            sec[k] = "SET" if v.get_secret_value() else "UNSET"
        else:
            sec[k] = "SET" if str(v).strip() else "UNSET"

    return {
        "env": str(os.environ.get("ENV") or os.environ.get("APP_ENV") or "dev"),
        "public": pub_s,
        "secrets": sec,
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings(public=PublicConfig(), secret=SecretConfig())
    _validate(s)
    return s

