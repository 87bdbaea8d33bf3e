"""Utility helpers for the SeasonBridge service."""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from typing import Any


GENERIC_SEASON_RE = re.compile(r"^season\s+\d+$", re.IGNORECASE)


def slugify(value: str) -> str:
    """Return a URL-friendly slug."""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9]+", "-", value)
    value = value.strip("-")
    value = re.sub(r"-+", "-", value)
    return value.lower()


def parse_int(value: Any) -> int | None:
    """Coerce numeric strings and ints, rejecting anything else."""

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def parse_positive_int(value: Any) -> int | None:
    number = parse_int(value)
    if number is None or number <= 0:
        return None
    return number


def parse_date(value: Any) -> date | None:
    """Parse ``YYYY-MM-DD`` or ISO timestamps into a calendar date."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def split_ids(value: Any) -> tuple[str, ...]:
    """Split comma separated identifier lists, dropping placeholders."""

    if not isinstance(value, str):
        return ()
    parts = [part.strip() for part in value.split(",")]
    return tuple(part for part in parts if part and part != "unknown")


def season_lookup_title(series_name: str, season_name: str | None, season_count: int) -> str:
    """Return the title used to look a single season up by name."""

    if season_count == 1 or not season_name:
        return series_name
    if GENERIC_SEASON_RE.match(season_name.strip()):
        return f"{series_name} {season_name.strip()}"
    return season_name
