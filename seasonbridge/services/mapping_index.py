"""In-memory mapping index and the loader that keeps it fresh."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Sequence

import httpx

from ..config import Settings
from ..models import ImdbAnchor, MappingEntry, OffsetMapping, WesternId
from .mapping_sources import (
    MappingSourceError,
    parse_anime_list,
    parse_imdb_anchors,
    parse_offset_table,
)

logger = logging.getLogger(__name__)


class MappingIndex:
    """Immutable lookup tables built from one generation of mapping data."""

    def __init__(
        self,
        generation: int = 0,
        entries: Sequence[MappingEntry] = (),
        offsets: Sequence[OffsetMapping] = (),
        anchors: Sequence[ImdbAnchor] = (),
        *,
        loaded_at: datetime | None = None,
    ) -> None:
        self.generation = generation
        self.loaded_at = loaded_at
        self.entries: tuple[MappingEntry, ...] = tuple(entries)
        self.offsets: tuple[OffsetMapping, ...] = tuple(offsets)
        self.anchors: tuple[ImdbAnchor, ...] = tuple(anchors)

        self._by_local: dict[int, MappingEntry] = {}
        self._by_mal: dict[int, MappingEntry] = {}
        self._by_anidb: dict[int, MappingEntry] = {}
        self._by_western: dict[tuple[str, str], list[MappingEntry]] = {}
        for entry in self.entries:
            if entry.local_id is not None:
                self._by_local.setdefault(entry.local_id, entry)
            if entry.mal_id is not None:
                self._by_mal.setdefault(entry.mal_id, entry)
            if entry.anidb_id is not None:
                self._by_anidb.setdefault(entry.anidb_id, entry)
            for western_id in entry.western_ids():
                key = (western_id.provider, western_id.value)
                self._by_western.setdefault(key, []).append(entry)

        self._offsets_by_tvdb: dict[int, list[OffsetMapping]] = {}
        for row in self.offsets:
            if row.tvdb_id is not None:
                self._offsets_by_tvdb.setdefault(row.tvdb_id, []).append(row)

        self._anchors_by_local: dict[int, ImdbAnchor] = {}
        self._anchors_by_imdb: dict[str, list[ImdbAnchor]] = {}
        for anchor in self.anchors:
            self._anchors_by_local.setdefault(anchor.local_id, anchor)
            self._anchors_by_imdb.setdefault(anchor.imdb_id, []).append(anchor)
        for group in self._anchors_by_imdb.values():
            group.sort(key=lambda item: (item.from_season or 1, item.from_episode or 1))

    @property
    def is_empty(self) -> bool:
        return not (self.entries or self.offsets or self.anchors)

    def by_local(self, local_id: int | None) -> MappingEntry | None:
        if local_id is None:
            return None
        return self._by_local.get(local_id)

    def by_mal(self, mal_id: int) -> MappingEntry | None:
        return self._by_mal.get(mal_id)

    def by_anidb(self, anidb_id: int) -> MappingEntry | None:
        return self._by_anidb.get(anidb_id)

    def siblings(self, western_id: WesternId | str) -> list[MappingEntry]:
        """Return every row sharing the Western id, in table order."""

        parsed = WesternId.parse(western_id)
        if parsed is None:
            return []
        return list(self._by_western.get((parsed.provider, parsed.value), ()))

    def offsets_for_tvdb(self, tvdb_id: int) -> list[OffsetMapping]:
        return list(self._offsets_by_tvdb.get(tvdb_id, ()))

    def anchor_for_local(self, local_id: int) -> ImdbAnchor | None:
        return self._anchors_by_local.get(local_id)

    def anchors_for_imdb(self, imdb_id: str) -> list[ImdbAnchor]:
        """Return anchors into the IMDb series ordered by starting position."""

        return list(self._anchors_by_imdb.get(imdb_id, ()))

    def stats(self) -> dict[str, Any]:
        return {
            "generation": self.generation,
            "loadedAt": self.loaded_at.isoformat() if self.loaded_at else None,
            "entries": len(self.entries),
            "localIds": len(self._by_local),
            "westernIds": len(self._by_western),
            "offsetRows": len(self.offsets),
            "offsetTvdbIds": len(self._offsets_by_tvdb),
            "imdbAnchors": len(self.anchors),
        }


@dataclass(slots=True)
class MappingSource:
    """A remote mapping table plus its on-disk snapshot location."""

    key: str
    url: str | None
    filename: str
    parser: Callable[[bytes], list[Any]]


@dataclass(slots=True)
class _Download:
    body: bytes
    validators: dict[str, str]
    from_snapshot: bool = False


class MappingIndexLoader:
    """Download the mapping tables and publish them as index generations.

    Each source is revalidated with ``If-None-Match`` / ``If-Modified-Since``
    against the validators stored beside its disk snapshot. A source that
    cannot be refreshed keeps the part it contributed to the previous
    generation, or the disk snapshot on a cold start.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        index: MappingIndex | None = None,
    ) -> None:
        self._settings = settings
        self._client = http_client
        self._index = index or MappingIndex()
        self._data_dir = Path(settings.mapping_data_dir)
        self._refresh_seconds = settings.mapping_refresh_seconds
        self._refresh_task: asyncio.Task[None] | None = None
        self._refresh_lock = asyncio.Lock()
        self._parts: dict[str, list[Any]] = {}
        self._sources = (
            MappingSource(
                "anime_list",
                str(settings.anime_list_url),
                "anime-list-full.json",
                parse_anime_list,
            ),
            MappingSource(
                "offsets",
                str(settings.anime_offsets_url),
                "anime-list-full.xml",
                parse_offset_table,
            ),
            MappingSource(
                "imdb_anchors",
                str(settings.kitsu_imdb_mapping_url)
                if settings.kitsu_imdb_mapping_url is not None
                else None,
                "kitsu-imdb-mapping.json",
                parse_imdb_anchors,
            ),
        )

    @property
    def index(self) -> MappingIndex:
        """Return the currently published generation."""

        return self._index

    async def start(self) -> None:
        """Load the first generation and launch the periodic refresh."""

        await self.refresh()
        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        """Stop the background refresh loop."""

        if self._refresh_task is None:
            return
        self._refresh_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._refresh_task
        self._refresh_task = None

    async def refresh(self) -> MappingIndex:
        """Build and publish a new generation from every source."""

        async with self._refresh_lock:
            results = await asyncio.gather(
                *(self._load_source(source) for source in self._sources)
            )
            parts: dict[str, list[Any]] = {}
            for source, rows in zip(self._sources, results):
                if rows is not None:
                    self._parts[source.key] = rows
                parts[source.key] = self._parts.get(source.key, [])

            index = await asyncio.to_thread(
                MappingIndex,
                self._index.generation + 1,
                parts["anime_list"],
                parts["offsets"],
                parts["imdb_anchors"],
                loaded_at=datetime.utcnow(),
            )
            self._index = index

        if index.is_empty:
            logger.critical(
                "No anime mapping data available; every resolution will return no result"
            )
        else:
            logger.info(
                "Published mapping index generation %s: %s", index.generation, index.stats()
            )
        return index

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_seconds)
            try:
                await self.refresh()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Scheduled mapping refresh failed: %s", exc)

    async def _load_source(self, source: MappingSource) -> list[Any] | None:
        if source.url is None:
            return []

        try:
            rows = await self._fetch_rows(source)
        except (httpx.HTTPError, OSError, MappingSourceError) as exc:
            logger.warning("Mapping source %s could not be refreshed: %s", source.key, exc)
        else:
            logger.info("Loaded %s rows from mapping source %s", len(rows), source.key)
            return rows

        if source.key in self._parts:
            logger.warning("Keeping previous %s data", source.key)
            return None
        return await self._load_snapshot(source)

    async def _fetch_rows(self, source: MappingSource) -> list[Any]:
        download = await self._download(source)
        try:
            rows = await asyncio.to_thread(source.parser, download.body)
        except (OSError, MappingSourceError) as exc:
            if not download.from_snapshot:
                raise
            logger.warning(
                "Disk snapshot for %s is unusable (%s); downloading it again",
                source.key,
                exc,
            )
            await asyncio.to_thread(
                self._validators_path(source).unlink, missing_ok=True
            )
            download = await self._download(source, conditional=False)
            rows = await asyncio.to_thread(source.parser, download.body)

        if not download.from_snapshot:
            await asyncio.to_thread(self._write_snapshot, source, download)
        return rows

    async def _download(self, source: MappingSource, *, conditional: bool = True) -> _Download:
        assert source.url is not None
        snapshot_path = self._snapshot_path(source)
        validators: dict[str, str] = {}
        if conditional and snapshot_path.exists():
            validators = self._read_validators(source)
        headers: dict[str, str] = {}
        if validators.get("etag"):
            headers["If-None-Match"] = validators["etag"]
        if validators.get("last_modified"):
            headers["If-Modified-Since"] = validators["last_modified"]

        response = await self._client.get(source.url, headers=headers)
        if response.status_code == 304:
            logger.info("Mapping source %s unchanged, using disk snapshot", source.key)
            body = await asyncio.to_thread(snapshot_path.read_bytes)
            return _Download(body=body, validators=validators, from_snapshot=True)
        response.raise_for_status()

        fresh_validators: dict[str, str] = {}
        if response.headers.get("etag"):
            fresh_validators["etag"] = response.headers["etag"]
        if response.headers.get("last-modified"):
            fresh_validators["last_modified"] = response.headers["last-modified"]
        return _Download(body=response.content, validators=fresh_validators)

    async def _load_snapshot(self, source: MappingSource) -> list[Any] | None:
        path = self._snapshot_path(source)
        if not path.exists():
            logger.warning("No disk snapshot for mapping source %s", source.key)
            return None
        try:
            body = await asyncio.to_thread(path.read_bytes)
            rows = await asyncio.to_thread(source.parser, body)
        except (OSError, MappingSourceError) as exc:
            logger.warning("Disk snapshot for %s is unusable: %s", source.key, exc)
            return None
        logger.info("Loaded %s rows for %s from disk snapshot", len(rows), source.key)
        return rows

    def _snapshot_path(self, source: MappingSource) -> Path:
        return self._data_dir / source.filename

    def _validators_path(self, source: MappingSource) -> Path:
        return self._data_dir / f"{source.filename}.validators.json"

    def _read_validators(self, source: MappingSource) -> dict[str, str]:
        path = self._validators_path(source)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
        if not isinstance(payload, dict):
            return {}
        return {str(key): str(value) for key, value in payload.items() if value}

    def _write_snapshot(self, source: MappingSource, download: _Download) -> None:
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            _write_atomic(self._snapshot_path(source), download.body)
            _write_atomic(
                self._validators_path(source),
                json.dumps(download.validators).encode("utf-8"),
            )
        except OSError as exc:
            logger.warning("Could not write snapshot for %s: %s", source.key, exc)


def _write_atomic(path: Path, body: bytes) -> None:
    temporary = path.with_name(f"{path.name}.tmp")
    temporary.write_bytes(body)
    os.replace(temporary, path)
