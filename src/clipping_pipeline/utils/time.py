from __future__ import annotations

import math
from datetime import datetime, timezone

# Absorbs float noise such as 0.29 * 100 == 28.999999999999996.
_EPS = 1e-6


def format_ass_timestamp(seconds: float) -> str:
    """
    Convert seconds to an ASS timestamp: H:MM:SS.CC (centiseconds truncated).
    """
    if seconds < 0:
        seconds = 0.0
    total_cs = int(math.floor(float(seconds) * 100.0 + _EPS))
    h, rem = divmod(total_cs, 360000)
    m, rem = divmod(rem, 6000)
    s, cs = divmod(rem, 100)
    return f"{h}:{m:02}:{s:02}.{cs:02}"


def format_srt_timestamp(seconds: float) -> str:
    """
    Convert seconds to SRT timestamp: HH:MM:SS,mmm
    """
    if seconds < 0:
        seconds = 0.0
    total_ms = int(math.floor(float(seconds) * 1000.0 + _EPS))
    h, rem = divmod(total_ms, 3600000)
    m, rem = divmod(rem, 60000)
    s, ms = divmod(rem, 1000)
    return f"{h:02}:{m:02}:{s:02},{ms:03}"


def parse_iso_ts(ts: str | None) -> float | None:
    if not ts:
        return None
    try:
        dt = datetime.fromisoformat(str(ts).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()
