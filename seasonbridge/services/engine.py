"""Facade tying the mapping index, franchise builder and translators together."""

from __future__ import annotations

import logging
from typing import Any

from ..models import (
    AbsoluteEpisode,
    AlignedEpisode,
    EpisodeCalendarEntry,
    FranchiseDebugInfo,
    IdentityTuple,
    ImdbAnchor,
    ResolvedEpisode,
    SourceSeries,
    WesternId,
)
from .episode_aligner import AlignmentPlan, CatalogLookup, EpisodeAligner
from .episode_resolver import EpisodeResolver
from .franchise import DetailProvider, FranchiseSeasonBuilder
from .identity import IdentityResolver, IdentityStore
from .mapping_index import MappingIndex, MappingIndexLoader

logger = logging.getLogger(__name__)


class ResolutionEngine:
    """Entry point for identity and episode resolution.

    Every lookup reads the loader's current generation. Missing data yields
    ``None`` or a synthetic id, never an exception.
    """

    def __init__(
        self,
        loader: MappingIndexLoader,
        detail_provider: DetailProvider,
        catalog_lookup: CatalogLookup,
        identity_store: IdentityStore,
    ) -> None:
        self.loader = loader
        self._catalog = catalog_lookup
        self.franchise = FranchiseSeasonBuilder(loader, detail_provider)
        self.episodes = EpisodeResolver(loader)
        self.aligner = EpisodeAligner(catalog_lookup)
        self.identity = IdentityResolver(identity_store, loader)

    @property
    def index(self) -> MappingIndex:
        return self.loader.index

    async def start(self) -> None:
        await self.loader.start()

    async def stop(self) -> None:
        await self.loader.stop()

    async def resolve_franchise_season(
        self, western_id: WesternId | str, season_number: int
    ) -> int | None:
        return await self.franchise.resolve_season(western_id, season_number)

    def resolve_episode(
        self, tvdb_id: int, source_season: int, source_episode: int
    ) -> ResolvedEpisode | None:
        return self.episodes.resolve(tvdb_id, source_season, source_episode)

    async def resolve_absolute_episode(
        self, western_id: WesternId | str, absolute_episode: int
    ) -> AbsoluteEpisode | None:
        layout = await self.franchise.absolute_layout(western_id)
        if layout is None:
            return None
        return layout.locate(absolute_episode)

    async def prepare_alignment(self, series: SourceSeries) -> AlignmentPlan:
        return await self.aligner.prepare(series)

    async def align_episode(
        self,
        series: SourceSeries,
        season: int,
        episode: int,
        air_date: Any = None,
    ) -> AlignedEpisode:
        """Align a single episode; use :meth:`prepare_alignment` for batches."""

        plan = await self.aligner.prepare(series)
        return plan.align(season, episode, air_date)

    async def franchise_debug_info(
        self, western_id: WesternId | str
    ) -> FranchiseDebugInfo | None:
        return await self.franchise.debug_info(western_id)

    async def map_local_episode(self, local_id: int, episode: int) -> AlignedEpisode | None:
        """Place a Kitsu episode inside the IMDb series it is anchored to."""

        anchor = self.index.anchor_for_local(local_id)
        if anchor is None or episode <= 0 or episode in anchor.non_imdb_episodes:
            return None
        position = episode - sum(
            1 for skipped in anchor.non_imdb_episodes if skipped < episode
        )

        calendar = await self._catalog.fetch_episode_calendar(anchor.imdb_id)
        layout = self._anchor_layout(anchor, calendar)
        if position > len(layout):
            logger.debug(
                "Kitsu %s episode %s runs past the IMDb calendar of %s",
                local_id,
                episode,
                anchor.imdb_id,
            )
            return None
        entry = layout[position - 1]
        return AlignedEpisode(anchor.imdb_id, entry.season, entry.episode, "episode-number")

    def _anchor_layout(
        self, anchor: ImdbAnchor, calendar: list[EpisodeCalendarEntry]
    ) -> list[EpisodeCalendarEntry]:
        start = _anchor_start(anchor)
        following = [
            _anchor_start(other)
            for other in self.index.anchors_for_imdb(anchor.imdb_id)
            if other.local_id != anchor.local_id
        ]
        following = [position for position in following if position > start]
        stop = min(following) if following else None
        return [
            entry
            for entry in calendar
            if entry.season != 0
            and (entry.season, entry.episode) >= start
            and (stop is None or (entry.season, entry.episode) < stop)
        ]

    async def resolve_identity(self, content_type: str, **ids: str | None) -> IdentityTuple:
        return await self.identity.resolve(content_type, IdentityTuple(**ids))


def _anchor_start(anchor: ImdbAnchor) -> tuple[int, int]:
    season = anchor.from_season if anchor.from_season is not None else 1
    return season, anchor.from_episode or 1
