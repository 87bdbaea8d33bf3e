"""Align episodes between catalogs whose season boundaries differ."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Protocol

from ..models import AlignedEpisode, EpisodeCalendarEntry, SourceSeries
from ..utils import parse_date, season_lookup_title

logger = logging.getLogger(__name__)

SCOPED_TOLERANCE_DAYS = 2
UNSCOPED_TOLERANCE_DAYS = 7


class CatalogLookup(Protocol):
    async def lookup_imdb_id(self, title: str, *, year: int | None = None) -> str | None:
        ...

    async def fetch_episode_calendar(self, imdb_id: str) -> list[EpisodeCalendarEntry]:
        ...


def closest_release(
    entries: Iterable[EpisodeCalendarEntry], air_date: date, tolerance_days: int
) -> EpisodeCalendarEntry | None:
    """Return the entry released closest to ``air_date`` within the tolerance.

    Ties keep calendar order; the tolerance boundary is inclusive.
    """

    best: EpisodeCalendarEntry | None = None
    best_delta: int | None = None
    for entry in entries:
        if entry.released is None:
            continue
        delta = abs((entry.released - air_date).days)
        if best_delta is None or delta < best_delta:
            best, best_delta = entry, delta
    if best is None or best_delta is None or best_delta > tolerance_days:
        return None
    return best


def seasons_covering(
    entries: Iterable[EpisodeCalendarEntry], air_date: date
) -> set[int]:
    """Return the seasons whose release date span contains ``air_date``."""

    spans: dict[int, tuple[date, date]] = {}
    for entry in entries:
        if entry.released is None:
            continue
        start, end = spans.get(entry.season, (entry.released, entry.released))
        spans[entry.season] = (min(start, entry.released), max(end, entry.released))
    return {season for season, (start, end) in spans.items() if start <= air_date <= end}


@dataclass(slots=True)
class AlignmentPlan:
    """Everything needed to align the episodes of one source series."""

    series: SourceSeries
    passthrough: bool = False
    common_id: str | None = None
    common_calendar: list[EpisodeCalendarEntry] = field(default_factory=list)
    season_ids: dict[int, str] = field(default_factory=dict)
    season_calendars: dict[str, list[EpisodeCalendarEntry]] = field(default_factory=dict)

    def align(self, season: int, episode: int, air_date: Any = None) -> AlignedEpisode:
        target_id = self.series.target_id
        if target_id and (season == 0 or self.passthrough):
            return AlignedEpisode(target_id, season, episode, "passthrough")

        released = parse_date(air_date)
        if self.common_id:
            aligned = self._align_common(released)
            if aligned is not None:
                return aligned
        elif season in self.season_ids:
            aligned = self._align_split(season, episode, released)
            if aligned is not None:
                return aligned

        logger.debug(
            "No aligned episode for %s S%sE%s (%s)",
            self.series.synthetic_prefix,
            season,
            episode,
            air_date,
        )
        return AlignedEpisode(self.series.synthetic_prefix, season, episode, "synthetic")

    def _align_common(self, released: date | None) -> AlignedEpisode | None:
        assert self.common_id is not None
        if released is None:
            return None
        pool = [entry for entry in self.common_calendar if entry.season != 0]
        covering = seasons_covering(pool, released)
        if covering:
            pool = [entry for entry in pool if entry.season in covering]
            tolerance = SCOPED_TOLERANCE_DAYS
        else:
            tolerance = UNSCOPED_TOLERANCE_DAYS
        match = closest_release(pool, released, tolerance)
        if match is None:
            return None
        return AlignedEpisode(self.common_id, match.season, match.episode, "air-date")

    def _align_split(
        self, season: int, episode: int, released: date | None
    ) -> AlignedEpisode | None:
        season_id = self.season_ids[season]
        pool = [
            entry
            for entry in self.season_calendars.get(season_id, [])
            if entry.season != 0
        ]
        if not pool:
            return None
        if released is not None:
            match = closest_release(pool, released, UNSCOPED_TOLERANCE_DAYS)
            if match is not None:
                return AlignedEpisode(season_id, match.season, match.episode, "air-date")
        for entry in pool:
            if entry.season == season and entry.episode == episode:
                return AlignedEpisode(season_id, entry.season, entry.episode, "episode-number")
        return None


class EpisodeAligner:
    """Prepare alignment plans from name lookups and episode calendars."""

    def __init__(self, lookup: CatalogLookup):
        self._lookup = lookup

    async def prepare(self, series: SourceSeries) -> AlignmentPlan:
        if not series.target_id:
            return AlignmentPlan(series)

        target_calendar = await self._lookup.fetch_episode_calendar(series.target_id)
        if not target_calendar:
            return AlignmentPlan(series)

        source_seasons = series.numbered_seasons
        target_seasons = {entry.season for entry in target_calendar if entry.season != 0}
        if source_seasons and len(source_seasons) == len(target_seasons):
            return AlignmentPlan(series, passthrough=True)

        titles = [
            season_lookup_title(series.name, season.name, len(source_seasons))
            for season in source_seasons
        ]
        resolved = await asyncio.gather(
            *(self._lookup.lookup_imdb_id(title) for title in titles)
        )
        logger.debug("Season title lookups for %s: %s", series.synthetic_prefix, resolved)

        distinct = {imdb_id for imdb_id in resolved if imdb_id}
        if resolved and len(distinct) == 1 and all(resolved):
            common_id = distinct.pop()
            if common_id == series.target_id:
                calendar = target_calendar
            else:
                calendar = await self._lookup.fetch_episode_calendar(common_id)
            return AlignmentPlan(series, common_id=common_id, common_calendar=calendar)

        if not series.is_anime:
            return AlignmentPlan(series)

        season_ids = {
            season.number: imdb_id
            for season, imdb_id in zip(source_seasons, resolved)
            if imdb_id
        }
        unique_ids = sorted(set(season_ids.values()))
        calendars = await asyncio.gather(
            *(self._lookup.fetch_episode_calendar(imdb_id) for imdb_id in unique_ids)
        )
        return AlignmentPlan(
            series,
            season_ids=season_ids,
            season_calendars=dict(zip(unique_ids, calendars)),
        )
