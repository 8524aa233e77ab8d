"""
Settings shim.

The canonical config lives in the root `config/` package:
  - `config/public_config.py` (non-sensitive defaults)
  - `config/secret_config.py` (secrets loaded from env / `.env.secrets`)
  - `config/settings.py` merges both behind a cached `get_settings()`

Package code imports `from clipping_pipeline.config import get_settings`.
"""

from __future__ import annotations

from config.settings import ConfigError as ConfigError
from config.settings import Settings as Settings
from config.settings import get_safe_config_report as get_safe_config_report
from config.settings import get_settings as get_settings
