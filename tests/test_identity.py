"""Tests for the identity store and resolver."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import cast

import httpx
from sqlalchemy import func, select

from seasonbridge.config import Settings
from seasonbridge.database import Database
from seasonbridge.db_models import IdentityMapping
from seasonbridge.models import IdentityTuple, MappingEntry
from seasonbridge.services.identity import IdentityResolver, IdentityStore
from seasonbridge.services.mapping_index import MappingIndex, MappingIndexLoader


class RecordingStore:
    """In-memory stand-in that records every save call."""

    def __init__(self, stored: IdentityTuple | None = None):
        self.stored = stored
        self.saved: list[tuple[str, IdentityTuple]] = []

    async def lookup(self, content_type: str, partial: IdentityTuple) -> IdentityTuple | None:
        return self.stored

    async def save(self, content_type: str, identity: IdentityTuple) -> bool:
        self.saved.append((content_type, identity))
        return True


def build_loader(*entries: MappingEntry) -> MappingIndexLoader:
    return MappingIndexLoader(
        Settings(_env_file=None),
        cast(httpx.AsyncClient, object()),
        index=MappingIndex(1, entries),
    )


def test_single_identifier_never_saves() -> None:
    store = RecordingStore()
    resolver = IdentityResolver(cast(IdentityStore, store), build_loader())

    identity = asyncio.run(resolver.resolve("series", IdentityTuple(tmdb_id="1")))

    assert identity == IdentityTuple(tmdb_id="1")
    assert store.saved == []


def test_two_identifiers_save_exactly_once() -> None:
    store = RecordingStore()
    resolver = IdentityResolver(cast(IdentityStore, store), build_loader())

    asyncio.run(resolver.resolve("series", IdentityTuple(tmdb_id="1", imdb_id="tt1")))

    assert len(store.saved) == 1
    assert store.saved[0] == ("series", IdentityTuple(tmdb_id="1", imdb_id="tt1"))


def test_gaps_are_filled_from_store_and_index() -> None:
    store = RecordingStore(stored=IdentityTuple(tmdb_id="1", tvmaze_id="9"))
    loader = build_loader(
        MappingEntry(local_id=5, subtype="tv", tvdb_id=300, tmdb_id=1, imdb_id="tt300")
    )
    resolver = IdentityResolver(cast(IdentityStore, store), loader)

    identity = asyncio.run(resolver.resolve("series", IdentityTuple(tmdb_id="1")))

    assert identity == IdentityTuple(tmdb_id="1", tvdb_id="300", imdb_id="tt300", tvmaze_id="9")
    assert len(store.saved) == 1


def test_index_rows_of_other_content_type_are_ignored() -> None:
    store = RecordingStore()
    loader = build_loader(MappingEntry(local_id=5, subtype="movie", tmdb_id=1, imdb_id="tt9"))
    resolver = IdentityResolver(cast(IdentityStore, store), loader)

    identity = asyncio.run(resolver.resolve("series", IdentityTuple(tmdb_id="1")))

    assert identity.imdb_id is None
    assert store.saved == []


def test_sqlite_store_roundtrip(tmp_path: Path) -> None:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'ids.db'}")
    store = IdentityStore(database.session_factory)

    async def runner() -> tuple[IdentityTuple | None, IdentityTuple | None, bool, int]:
        await database.create_all()
        ignored = await store.save("series", IdentityTuple(tmdb_id="7"))
        await store.save("series", IdentityTuple(tmdb_id="7", imdb_id="tt7"))
        await store.save("series", IdentityTuple(tmdb_id="7", imdb_id="tt7"))
        found = await store.lookup("series", IdentityTuple(imdb_id="tt7"))
        other_type = await store.lookup("movie", IdentityTuple(imdb_id="tt7"))
        async with database.session() as session:
            count = (
                await session.execute(select(func.count()).select_from(IdentityMapping))
            ).scalar_one()
        await database.dispose()
        return found, other_type, ignored, count

    found, other_type, ignored, count = asyncio.run(runner())

    assert found == IdentityTuple(tmdb_id="7", imdb_id="tt7")
    assert other_type is None
    assert ignored is False
    assert count == 1


def test_store_lookup_without_identifiers_returns_none(tmp_path: Path) -> None:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'ids.db'}")
    store = IdentityStore(database.session_factory)

    async def runner() -> IdentityTuple | None:
        await database.create_all()
        result = await store.lookup("series", IdentityTuple(tmdb_id="  "))
        await database.dispose()
        return result

    assert asyncio.run(runner()) is None
