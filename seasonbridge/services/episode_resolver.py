"""Translate TVDB season/episode numbers into AniDB numbering."""

from __future__ import annotations

import logging
from dataclasses import replace

from ..models import ABSOLUTE, UNASSIGNED, OffsetMapping, ResolvedEpisode
from .mapping_index import MappingIndexLoader

logger = logging.getLogger(__name__)


class EpisodeResolver:
    """Resolve episodes through the episode-offset table.

    Rows sharing the TVDB id are tried in table order and the first one that
    produces a positive episode number wins.
    """

    def __init__(self, loader: MappingIndexLoader):
        self._loader = loader

    def resolve(
        self, tvdb_id: int, source_season: int, source_episode: int
    ) -> ResolvedEpisode | None:
        index = self._loader.index
        rows = index.offsets_for_tvdb(tvdb_id)
        if not rows or source_episode <= 0:
            return None

        for row in rows:
            target = row.default_target_season
            if target == ABSOLUTE:
                result = self._resolve_absolute(row, source_season, source_episode)
            elif target == UNASSIGNED:
                continue
            elif target == source_season:
                result = self._resolve_regular(row, rows, source_season, source_episode)
            else:
                continue
            if result is None:
                continue

            entry = index.by_anidb(row.anidb_id)
            if entry is not None and entry.local_id is not None:
                result = replace(result, local_id=entry.local_id)
            logger.debug(
                "Resolved TVDB %s S%sE%s to AniDB %s S%sE%s (%s)",
                tvdb_id,
                source_season,
                source_episode,
                result.anidb_id,
                result.season,
                result.episode,
                result.mode,
            )
            return result

        logger.debug(
            "No offset row covers TVDB %s S%sE%s", tvdb_id, source_season, source_episode
        )
        return None

    @staticmethod
    def _resolve_absolute(
        row: OffsetMapping, source_season: int, source_episode: int
    ) -> ResolvedEpisode | None:
        for mapping in row.ranges_for(source_season):
            if not mapping.has_window:
                continue
            assert mapping.start is not None and mapping.end is not None
            episode = source_episode - mapping.offset
            if episode <= 0 or not mapping.start <= episode <= mapping.end:
                continue
            return ResolvedEpisode(
                anidb_id=row.anidb_id,
                season=mapping.target_season if mapping.target_season is not None else 1,
                episode=episode,
                mode="absolute",
            )
        return None

    @staticmethod
    def _resolve_regular(
        row: OffsetMapping,
        rows: list[OffsetMapping],
        source_season: int,
        source_episode: int,
    ) -> ResolvedEpisode | None:
        same_season = [
            candidate
            for candidate in rows
            if candidate.default_target_season == row.default_target_season
        ]
        offset = row.episode_offset

        if len(same_season) == 1:
            episode = source_episode - offset
            if episode <= 0:
                return None
            return ResolvedEpisode(
                anidb_id=row.anidb_id, season=1, episode=episode, mode="direct"
            )

        ranges = row.ranges_for(source_season)
        for mapping in ranges:
            paired = mapping.target_for_pair(source_episode)
            if paired is not None:
                return ResolvedEpisode(
                    anidb_id=row.anidb_id,
                    season=mapping.target_season if mapping.target_season is not None else 1,
                    episode=paired,
                    mode="pair",
                )

        windows = [mapping for mapping in ranges if mapping.has_window]
        if windows:
            for mapping in windows:
                assert mapping.start is not None and mapping.end is not None
                if not mapping.start + offset <= source_episode <= mapping.end + offset:
                    continue
                episode = source_episode - offset
                if episode <= 0:
                    return None
                return ResolvedEpisode(
                    anidb_id=row.anidb_id,
                    season=mapping.target_season if mapping.target_season is not None else 1,
                    episode=episode,
                    mode="range",
                )
            return None

        # Each row owns episodes up to the next row's offset.
        ordered = sorted(same_season, key=lambda item: (item.episode_offset, item.position))
        position = next(
            (i for i, candidate in enumerate(ordered) if candidate.anidb_id == row.anidb_id),
            None,
        )
        if position is not None and position + 1 < len(ordered):
            if source_episode > ordered[position + 1].episode_offset:
                return None
        episode = source_episode - offset
        if episode <= 0:
            return None
        return ResolvedEpisode(
            anidb_id=row.anidb_id,
            season=1,
            episode=episode,
            mode="offset-heuristic",
            confident=False,
        )
