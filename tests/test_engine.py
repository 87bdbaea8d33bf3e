"""Tests for the resolution engine facade."""

from __future__ import annotations

import asyncio
from datetime import date, timedelta
from pathlib import Path
from typing import Iterable, cast

import httpx

from seasonbridge.config import Settings
from seasonbridge.database import Database
from seasonbridge.models import (
    AnimeDetail,
    EpisodeCalendarEntry,
    IdentityTuple,
    ImdbAnchor,
    MappingEntry,
    OffsetMapping,
    SourceSeason,
    SourceSeries,
)
from seasonbridge.services.engine import ResolutionEngine
from seasonbridge.services.identity import IdentityStore
from seasonbridge.services.mapping_index import MappingIndex, MappingIndexLoader


class StubDetails:
    def __init__(self, *details: AnimeDetail):
        self.details = {detail.local_id: detail for detail in details}

    async def fetch_details(self, local_ids: Iterable[int]) -> dict[int, AnimeDetail]:
        return {
            local_id: self.details[local_id]
            for local_id in local_ids
            if local_id in self.details
        }


class StubCatalog:
    def __init__(self, calendars: dict[str, list[EpisodeCalendarEntry]]):
        self.calendars = calendars

    async def lookup_imdb_id(self, title: str, *, year: int | None = None) -> str | None:
        return None

    async def fetch_episode_calendar(self, imdb_id: str) -> list[EpisodeCalendarEntry]:
        return self.calendars.get(imdb_id, [])


def season(number: int, count: int, first: date) -> list[EpisodeCalendarEntry]:
    return [
        EpisodeCalendarEntry(number, episode, first + timedelta(weeks=episode - 1))
        for episode in range(1, count + 1)
    ]


ROWS = (
    MappingEntry(local_id=1, subtype="tv", tvdb_id=900, imdb_id="tt900", anidb_id=11, position=0),
    MappingEntry(local_id=2, subtype="tv", tvdb_id=900, imdb_id="tt900", anidb_id=12, position=1),
)
ANCHORS = (
    ImdbAnchor(local_id=1, imdb_id="tt900", from_season=1, from_episode=1),
    ImdbAnchor(
        local_id=2,
        imdb_id="tt900",
        from_season=1,
        from_episode=13,
        non_imdb_episodes=frozenset({3}),
    ),
)
OFFSETS = (
    OffsetMapping(anidb_id=12, default_target_season=2, episode_offset=0, tvdb_id=900),
)
CALENDAR = season(1, 24, date(2020, 1, 1)) + season(2, 10, date(2022, 1, 1))


def build_engine(tmp_path: Path) -> tuple[ResolutionEngine, Database]:
    loader = MappingIndexLoader(
        Settings(_env_file=None),
        cast(httpx.AsyncClient, object()),
        index=MappingIndex(1, ROWS, OFFSETS, ANCHORS),
    )
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}")
    engine = ResolutionEngine(
        loader,
        StubDetails(
            AnimeDetail(1, "tv", date(2020, 1, 1), 12),
            AnimeDetail(2, "tv", date(2020, 4, 1), 12),
        ),
        StubCatalog({"tt900": CALENDAR}),
        IdentityStore(database.session_factory),
    )
    return engine, database


def test_map_local_episode_follows_anchor_layout(tmp_path: Path) -> None:
    engine, _ = build_engine(tmp_path)

    async def runner():
        return (
            await engine.map_local_episode(1, 12),
            await engine.map_local_episode(1, 13),
            await engine.map_local_episode(2, 1),
            await engine.map_local_episode(2, 3),
            await engine.map_local_episode(2, 4),
            await engine.map_local_episode(2, 14),
            await engine.map_local_episode(99, 1),
        )

    first_last, first_overflow, second_first, skipped, after_skip, into_next, unknown = (
        asyncio.run(runner())
    )

    assert first_last is not None and first_last.stremio_id == "tt900:1:12"
    assert first_overflow is None
    assert second_first is not None and second_first.stremio_id == "tt900:1:13"
    assert skipped is None
    assert after_skip is not None and after_skip.stremio_id == "tt900:1:15"
    assert into_next is not None and into_next.stremio_id == "tt900:2:1"
    assert unknown is None


def test_resolve_absolute_episode_through_franchise_layout(tmp_path: Path) -> None:
    engine, _ = build_engine(tmp_path)

    located = asyncio.run(engine.resolve_absolute_episode("tvdb:900", 15))

    assert located is not None
    assert (located.season, located.local_id, located.episode) == (2, 2, 3)
    assert asyncio.run(engine.resolve_absolute_episode("tvdb:900", 25)) is None


def test_resolve_episode_and_franchise_season(tmp_path: Path) -> None:
    engine, _ = build_engine(tmp_path)

    resolved = engine.resolve_episode(900, 2, 4)

    assert resolved is not None
    assert (resolved.anidb_id, resolved.local_id, resolved.episode) == (12, 2, 4)
    assert asyncio.run(engine.resolve_franchise_season("tt900", 2)) == 2


def test_align_episode_falls_back_to_synthetic(tmp_path: Path) -> None:
    engine, _ = build_engine(tmp_path)
    source = SourceSeries(
        catalog="tmdb",
        catalog_id="42",
        name="X",
        seasons=[SourceSeason(1), SourceSeason(2), SourceSeason(3)],
        target_id="tt900",
    )

    aligned = asyncio.run(engine.align_episode(source, 3, 1, "2023-01-01"))

    assert aligned.stremio_id == "tmdb:42:3:1"


def test_resolve_identity_persists_learned_tuple(tmp_path: Path) -> None:
    engine, database = build_engine(tmp_path)

    async def runner() -> tuple[IdentityTuple, IdentityTuple]:
        await database.create_all()
        first = await engine.resolve_identity("series", tvdb_id="900")
        second = await engine.resolve_identity("series", imdb_id="tt900", tvmaze_id="77")
        await database.dispose()
        return first, second

    first, second = asyncio.run(runner())

    assert first == IdentityTuple(tvdb_id="900", imdb_id="tt900")
    assert second == IdentityTuple(tvdb_id="900", imdb_id="tt900", tvmaze_id="77")
