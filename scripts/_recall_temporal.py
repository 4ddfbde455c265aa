"""Recall engine temporal decay — content age from paths and half-life multipliers."""

from __future__ import annotations

import math
import os
from datetime import date, datetime, timezone

from _recall_constants import DATE_PATH_RE, DECAY_FLOOR, DECAY_SPAN, DEFAULT_HALF_LIFE_DAYS

__all__ = [
    "parse_date_from_path",
    "content_age_days",
    "temporal_multiplier",
]

_SECONDS_PER_DAY = 86_400.0


def parse_date_from_path(rel_path: str) -> date | None:
    """Date embedded in a ``YYYY-MM-DD.md`` file name, or None.

    Impossible calendar dates (2025-02-30) return None.
    """
    normalized = rel_path.replace("\\", "/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    match = DATE_PATH_RE.search(normalized)
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def content_age_days(rel_path: str, full_path: str, now: datetime) -> float | None:
    """Age in days from the file name date, else from the file mtime.

    Never negative; None when neither source is available.
    """
    file_date = parse_date_from_path(rel_path)
    if file_date is not None:
        midnight = datetime(file_date.year, file_date.month, file_date.day, tzinfo=timezone.utc)
        return max(0.0, (now - midnight).total_seconds()) / _SECONDS_PER_DAY
    try:
        mtime = os.path.getmtime(full_path)
    except OSError:
        return None
    return max(0.0, now.timestamp() - mtime) / _SECONDS_PER_DAY


def temporal_multiplier(age_days: float | None, half_life_days: float = DEFAULT_HALF_LIFE_DAYS) -> float:
    """0.65 + 0.35 * e^(-ln2 * age / half_life); 1.0 for unknown or non-positive age."""
    if age_days is None or not math.isfinite(age_days) or age_days <= 0:
        return 1.0
    half_life = half_life_days if half_life_days > 0 else DEFAULT_HALF_LIFE_DAYS
    decay = math.exp(-math.log(2) * (age_days / half_life))
    return DECAY_FLOOR + DECAY_SPAN * decay
