"""Reconstruct Western season numbering from Eastern per-cours titles."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Protocol

from ..models import (
    SUPPLEMENTARY_SUBTYPES,
    AbsoluteEpisodeLayout,
    AnimeDetail,
    FranchiseDebugInfo,
    FranchiseSeasonInfo,
    MappingEntry,
    WesternId,
)
from .mapping_index import MappingIndex, MappingIndexLoader

logger = logging.getLogger(__name__)


class DetailProvider(Protocol):
    async def fetch_details(self, local_ids: Iterable[int]) -> dict[int, AnimeDetail]:
        ...


@dataclass(slots=True)
class FranchiseSeasonMap:
    """Season number to Kitsu id for one Western id and index generation."""

    western_id: WesternId
    generation: int
    seasons: dict[int, int] = field(default_factory=dict)
    details: dict[int, AnimeDetail] = field(default_factory=dict)
    tv_ids: tuple[int, ...] = ()
    supplementary_ids: tuple[int, ...] = ()

    def local_id_for(self, season_number: int) -> int | None:
        return self.seasons.get(season_number)

    def season_of(self, local_id: int) -> int | None:
        for season_number, candidate in self.seasons.items():
            if candidate == local_id:
                return season_number
        return None


def determine_mapping_scenario(tv_count: int, supplementary_count: int) -> str:
    if tv_count == 1 and supplementary_count == 0:
        return "single_tv_series"
    if tv_count == 0 and supplementary_count == 1:
        return "single_ova"
    if tv_count > 1 and supplementary_count == 0:
        return "multiple_tv_seasons"
    if tv_count == 1 and supplementary_count > 0:
        return "tv_series_with_ovas"
    if tv_count > 1 and supplementary_count > 0:
        return "multiple_tv_seasons_with_ovas"
    if tv_count == 0 and supplementary_count > 1:
        return "multiple_ovas_only"
    return "complex_mapping"


def _air_order(detail: AnimeDetail) -> tuple[bool, date]:
    return (detail.start_date is None, detail.start_date or date.max)


class FranchiseSeasonBuilder:
    """Build and memoize franchise season maps.

    Maps are cached per Western id for the index generation they were built
    from; the cache is dropped as soon as the loader publishes a new
    generation. Concurrent first-time builds of the same id share one task.
    """

    def __init__(self, loader: MappingIndexLoader, detail_provider: DetailProvider):
        self._loader = loader
        self._details = detail_provider
        self._cache: dict[tuple[str, str], FranchiseSeasonMap] = {}
        self._cache_generation: int | None = None
        self._build_jobs: dict[tuple[int, str, str], asyncio.Task[FranchiseSeasonMap | None]] = {}

    async def resolve_season(
        self, western_id: WesternId | str, season_number: int
    ) -> int | None:
        """Return the Kitsu id playing ``season_number`` for the Western id."""

        season_map = await self.season_map(western_id)
        if season_map is None:
            return None
        local_id = season_map.local_id_for(season_number)
        if local_id is None:
            logger.debug(
                "No Kitsu id for season %s of %s; available seasons %s",
                season_number,
                season_map.western_id,
                sorted(season_map.seasons),
            )
        return local_id

    async def season_map(self, western_id: WesternId | str) -> FranchiseSeasonMap | None:
        parsed = WesternId.parse(western_id)
        if parsed is None:
            return None
        index = self._loader.index
        if self._cache_generation != index.generation:
            self._cache.clear()
            self._cache_generation = index.generation

        key = (parsed.provider, parsed.value)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        job_key = (index.generation, parsed.provider, parsed.value)
        task = self._build_jobs.get(job_key)
        if task is None:
            task = asyncio.create_task(self._build(index, parsed))
            self._build_jobs[job_key] = task
            task.add_done_callback(lambda _: self._build_jobs.pop(job_key, None))
        return await asyncio.shield(task)

    async def _build(
        self, index: MappingIndex, western_id: WesternId
    ) -> FranchiseSeasonMap | None:
        siblings = [entry for entry in index.siblings(western_id) if entry.local_id]
        if not siblings:
            return None

        if len(siblings) == 1:
            entry = siblings[0]
            assert entry.local_id is not None
            season_map = FranchiseSeasonMap(
                western_id=western_id,
                generation=index.generation,
                seasons={1: entry.local_id},
                details={entry.local_id: self._fallback_detail(entry)},
                tv_ids=(entry.local_id,) if entry.subtype == "tv" else (),
                supplementary_ids=(
                    (entry.local_id,) if entry.subtype in SUPPLEMENTARY_SUBTYPES else ()
                ),
            )
            self._remember(western_id, season_map)
            return season_map

        fetched = await self._details.fetch_details(
            entry.local_id for entry in siblings if entry.local_id
        )

        details: dict[int, AnimeDetail] = {}
        for entry in siblings:
            assert entry.local_id is not None
            if entry.local_id in details:
                continue
            details[entry.local_id] = fetched.get(entry.local_id) or self._fallback_detail(entry)

        ordered = list(details.values())
        tv_series = sorted(
            (detail for detail in ordered if detail.subtype == "tv"), key=_air_order
        )
        supplementary = sorted(
            (detail for detail in ordered if detail.subtype in SUPPLEMENTARY_SUBTYPES),
            key=_air_order,
        )

        seasons = {
            position: detail.local_id for position, detail in enumerate(tv_series, start=1)
        }
        if supplementary:
            seasons[0] = supplementary[0].local_id

        season_map = FranchiseSeasonMap(
            western_id=western_id,
            generation=index.generation,
            seasons=seasons,
            details=details,
            tv_ids=tuple(detail.local_id for detail in tv_series),
            supplementary_ids=tuple(detail.local_id for detail in supplementary),
        )
        logger.debug("Built franchise map for %s: %s", western_id, seasons)
        missing = sorted(set(details) - set(fetched))
        if not missing:
            self._remember(western_id, season_map)
        else:
            logger.warning(
                "No Kitsu details for %s of %s; serving an uncached franchise map",
                missing,
                western_id,
            )
        return season_map

    def _remember(self, western_id: WesternId, season_map: FranchiseSeasonMap) -> None:
        if season_map.generation != self._cache_generation:
            return
        self._cache[(western_id.provider, western_id.value)] = season_map

    @staticmethod
    def _fallback_detail(entry: MappingEntry) -> AnimeDetail:
        assert entry.local_id is not None
        return AnimeDetail(local_id=entry.local_id, subtype=entry.subtype, title=entry.title)

    async def debug_info(self, western_id: WesternId | str) -> FranchiseDebugInfo | None:
        """Describe how the Western id decomposes into Kitsu seasons."""

        season_map = await self.season_map(western_id)
        if season_map is None:
            return None
        seasons: dict[int, FranchiseSeasonInfo] = {}
        for season_number, local_id in season_map.seasons.items():
            detail = season_map.details.get(local_id)
            seasons[season_number] = FranchiseSeasonInfo(
                local_id=local_id,
                title=detail.title if detail else None,
                subtype=detail.subtype if detail else "other",
                start_date=detail.start_date if detail else None,
                episode_count=detail.episode_count if detail else None,
                mapping_type="ova_ona" if season_number == 0 else "tv_series",
            )
        return FranchiseDebugInfo(
            western_id=str(season_map.western_id),
            generation=season_map.generation,
            seasons=seasons,
            mapping_scenario=determine_mapping_scenario(
                len(season_map.tv_ids), len(season_map.supplementary_ids)
            ),
            tv_series_count=len(season_map.tv_ids),
            ova_count=len(season_map.supplementary_ids),
            supplementary_ids=list(season_map.supplementary_ids),
            sibling_ids=list(season_map.details),
        )

    async def locate_local_season(self, local_id: int) -> tuple[str, int] | None:
        """Return ``(imdb_id, season)`` of a Kitsu id inside its IMDb franchise."""

        entry = self._loader.index.by_local(local_id)
        if entry is None or not entry.imdb_id:
            return None
        season_map = await self.season_map(WesternId("imdb", entry.imdb_id))
        if season_map is None:
            return None
        season_number = season_map.season_of(local_id)
        if season_number is None:
            return None
        return entry.imdb_id, season_number

    async def absolute_layout(
        self, western_id: WesternId | str
    ) -> AbsoluteEpisodeLayout | None:
        """Lay the franchise's TV seasons out in absolute episode order."""

        season_map = await self.season_map(western_id)
        if season_map is None:
            return None
        numbered = [
            (season_number, local_id)
            for season_number, local_id in sorted(season_map.seasons.items())
            if season_number > 0
        ]
        counts = {
            local_id: detail.episode_count
            for local_id, detail in season_map.details.items()
        }
        # Single-sibling maps are built without details.
        missing = [local_id for _, local_id in numbered if not counts.get(local_id)]
        if missing:
            fetched = await self._details.fetch_details(missing)
            counts.update(
                {local_id: detail.episode_count for local_id, detail in fetched.items()}
            )
        return AbsoluteEpisodeLayout.from_seasons(
            (season_number, local_id, counts.get(local_id))
            for season_number, local_id in numbered
        )
