"""Parsers for the externally published anime mapping tables."""

from __future__ import annotations

import json
import logging
import re
import xml.etree.ElementTree as ET
from typing import Any, Iterable

from ..models import (
    ABSOLUTE,
    UNASSIGNED,
    EpisodeRange,
    ImdbAnchor,
    MappingEntry,
    OffsetMapping,
    TargetSeason,
    normalize_subtype,
)
from ..utils import parse_int, parse_positive_int, split_ids

logger = logging.getLogger(__name__)

_EPISODE_PAIR_RE = re.compile(r"(\d+)-(\d+)")


class MappingSourceError(RuntimeError):
    """Raised when a mapping source payload cannot be used at all."""


def _decode(payload: bytes | str) -> str:
    if isinstance(payload, bytes):
        return payload.decode("utf-8", errors="replace")
    return payload


def _imdb_id(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    candidate = value.strip()
    if candidate.startswith("tt") and candidate[2:].isdigit():
        return candidate
    return None


def _tmdb_id(value: Any) -> int | None:
    # Some table revisions nest the id as {"tv": 123} or {"movie": 456}.
    if isinstance(value, dict):
        return parse_positive_int(value.get("tv")) or parse_positive_int(
            value.get("movie")
        )
    return parse_positive_int(value)


def parse_anime_list(payload: bytes | str) -> list[MappingEntry]:
    """Parse the flat cross-catalog JSON table into mapping rows.

    Rows without any usable identifier are skipped. The table order is kept
    in :attr:`MappingEntry.position` so sibling ordering stays stable.
    """

    try:
        data = json.loads(_decode(payload))
    except ValueError as exc:
        raise MappingSourceError(f"Anime list is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise MappingSourceError("Anime list payload must be a JSON array")

    entries: list[MappingEntry] = []
    skipped = 0
    for position, row in enumerate(data):
        if not isinstance(row, dict):
            skipped += 1
            continue
        title = row.get("title") or row.get("name")
        entry = MappingEntry(
            local_id=parse_positive_int(row.get("kitsu_id")),
            subtype=normalize_subtype(row.get("type")),
            title=str(title) if title else None,
            mal_id=parse_positive_int(row.get("mal_id")),
            anidb_id=parse_positive_int(row.get("anidb_id")),
            anilist_id=parse_positive_int(row.get("anilist_id")),
            tvdb_id=parse_positive_int(row.get("thetvdb_id") or row.get("tvdb_id")),
            tmdb_id=_tmdb_id(row.get("themoviedb_id") or row.get("tmdb_id")),
            imdb_id=_imdb_id(row.get("imdb_id")),
            position=position,
        )
        if not any(
            (
                entry.local_id,
                entry.mal_id,
                entry.anidb_id,
                entry.anilist_id,
                entry.tvdb_id,
                entry.tmdb_id,
                entry.imdb_id,
            )
        ):
            skipped += 1
            continue
        entries.append(entry)

    if skipped:
        logger.debug("Skipped %s malformed anime list rows", skipped)
    return entries


def _parse_target_season(value: str | None) -> TargetSeason | None:
    text = (value or "").strip().lower()
    if text == "a":
        return ABSOLUTE
    if text == "0":
        return UNASSIGNED
    number = parse_positive_int(text)
    return number


def _parse_episode_pairs(text: str | None) -> tuple[tuple[int, int], ...]:
    """Parse ``;1-3;2-4;`` style mapping text into ``(target, source)`` pairs."""

    if not text:
        return ()
    pairs: list[tuple[int, int]] = []
    for chunk in text.split(";"):
        match = _EPISODE_PAIR_RE.fullmatch(chunk.strip())
        if match is None:
            continue
        pairs.append((int(match.group(1)), int(match.group(2))))
    return tuple(pairs)


def _parse_ranges(element: ET.Element) -> tuple[EpisodeRange, ...]:
    ranges: list[EpisodeRange] = []
    for mapping in element.iterfind("mapping-list/mapping"):
        source_season = parse_int(mapping.get("tvdbseason"))
        target_season = parse_int(mapping.get("anidbseason"))
        if source_season is None and target_season is None:
            continue
        ranges.append(
            EpisodeRange(
                source_season=source_season,
                target_season=target_season,
                start=parse_int(mapping.get("start")),
                end=parse_int(mapping.get("end")),
                offset=parse_int(mapping.get("offset")) or 0,
                episode_pairs=_parse_episode_pairs(mapping.text),
            )
        )
    return tuple(ranges)


def parse_offset_table(payload: bytes | str) -> list[OffsetMapping]:
    """Parse the XML episode-offset table.

    ``defaulttvdbseason="a"`` marks absolute numbering and ``"0"`` marks a
    multi-season row that does not map to a single season. Rows with a
    missing AniDB id or an unknown season marker are skipped.
    """

    # Bytes keep the XML encoding declaration usable.
    raw = payload.encode("utf-8") if isinstance(payload, str) else payload
    try:
        root = ET.fromstring(raw)
    except (ET.ParseError, ValueError) as exc:
        raise MappingSourceError(f"Offset table is not valid XML: {exc}") from exc

    rows: list[OffsetMapping] = []
    skipped = 0
    for position, element in enumerate(root.iter("anime")):
        anidb_id = parse_positive_int(element.get("anidbid"))
        default_season = _parse_target_season(element.get("defaulttvdbseason"))
        if anidb_id is None or default_season is None:
            skipped += 1
            continue
        name_element = element.find("name")
        name = (
            name_element.text.strip()
            if name_element is not None and name_element.text
            else None
        )
        imdb_ids = tuple(
            imdb for imdb in split_ids(element.get("imdbid")) if _imdb_id(imdb)
        )
        rows.append(
            OffsetMapping(
                anidb_id=anidb_id,
                default_target_season=default_season,
                episode_offset=parse_int(element.get("episodeoffset")) or 0,
                explicit_ranges=_parse_ranges(element),
                tvdb_id=parse_positive_int(element.get("tvdbid")),
                tmdb_tv_id=parse_positive_int(element.get("tmdbtv")),
                imdb_ids=imdb_ids,
                name=name,
                position=position,
            )
        )

    if skipped:
        logger.debug("Skipped %s malformed offset table rows", skipped)
    return rows


def _anchor_rows(data: Any) -> Iterable[tuple[Any, Any]]:
    if isinstance(data, dict):
        return data.items()
    if isinstance(data, list):
        return ((None, row) for row in data)
    raise MappingSourceError("Kitsu/IMDb table must be a JSON object or array")


def parse_imdb_anchors(payload: bytes | str) -> list[ImdbAnchor]:
    """Parse the community Kitsu-to-IMDb table.

    The table is usually an object keyed by Kitsu id; a plain array of rows
    carrying ``kitsu_id`` is accepted too.
    """

    try:
        data = json.loads(_decode(payload))
    except ValueError as exc:
        raise MappingSourceError(f"Kitsu/IMDb table is not valid JSON: {exc}") from exc

    anchors: list[ImdbAnchor] = []
    skipped = 0
    for key, row in _anchor_rows(data):
        if not isinstance(row, dict):
            skipped += 1
            continue
        local_id = parse_positive_int(row.get("kitsu_id")) or parse_positive_int(key)
        imdb_id = _imdb_id(row.get("imdb_id"))
        if local_id is None or imdb_id is None:
            skipped += 1
            continue
        raw_skips = row.get("nonImdbEpisodes") or []
        non_imdb = frozenset(
            number
            for number in (
                parse_positive_int(value)
                for value in (raw_skips if isinstance(raw_skips, list) else [])
            )
            if number is not None
        )
        title = row.get("title")
        anchors.append(
            ImdbAnchor(
                local_id=local_id,
                imdb_id=imdb_id,
                title=str(title) if title else None,
                from_season=parse_int(row.get("fromSeason")),
                from_episode=parse_positive_int(row.get("fromEpisode")),
                non_imdb_episodes=non_imdb,
            )
        )

    if skipped:
        logger.debug("Skipped %s malformed Kitsu/IMDb rows", skipped)
    return anchors
