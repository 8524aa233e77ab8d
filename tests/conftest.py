from __future__ import annotations

import pytest

from clipping_pipeline.config import get_settings


@pytest.fixture(autouse=True)
def _test_env(
    tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch
) -> None:
    root = tmp_path_factory.mktemp("cp_test")
    (root / "uploads").mkdir(parents=True, exist_ok=True)
    (root / "Output").mkdir(parents=True, exist_ok=True)
    (root / "logs").mkdir(parents=True, exist_ok=True)
    (root / "_state").mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("APP_ROOT", str(root))
    monkeypatch.setenv("CLIPS_OUTPUT_DIR", str(root / "Output"))
    monkeypatch.setenv("CLIPS_LOG_DIR", str(root / "logs"))
    monkeypatch.setenv("CLIPS_STATE_DIR", str(root / "_state"))
    monkeypatch.setenv("CLIPS_UPLOADS_DIR", str(root / "uploads"))
    monkeypatch.setenv("REPROCESS_CACHE_BACKEND", "local")
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("API_TOKEN", raising=False)
    get_settings.cache_clear()
