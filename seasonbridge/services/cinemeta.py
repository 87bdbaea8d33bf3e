"""Client for Cinemeta-compatible add-ons: name lookup and episode calendars."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any
from urllib.parse import quote

import httpx

from ..models import EpisodeCalendarEntry
from ..utils import parse_date, parse_int, slugify

logger = logging.getLogger(__name__)


class CinemetaClient:
    """Wrapper around Cinemeta catalog search and series meta endpoints."""

    _SEARCH_PATH = "/catalog/{type}/top/search={query}.json"
    _META_PATH = "/meta/{type}/{id}.json"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str | None = None,
    ) -> None:
        self._client = http_client
        self._base_url = self._normalize_base_url(base_url)
        self._semaphore = asyncio.Semaphore(8)

    @property
    def base_url(self) -> str | None:
        return self._base_url

    async def lookup_imdb_id(
        self,
        title: str,
        *,
        year: int | None = None,
        content_type: str = "series",
    ) -> str | None:
        """Return the IMDb id of the best catalog match for ``title``."""

        normalized_title = (title or "").strip()
        if not normalized_title or not self._base_url:
            return None

        path = self._SEARCH_PATH.format(
            type=content_type,
            query=quote(normalized_title, safe=""),
        )
        payload = await self._get_json(f"{self._base_url}{path}", normalized_title)
        if payload is None:
            return None
        metas = payload.get("metas") or []
        if not isinstance(metas, list) or not metas:
            return None

        match = self._select_best_match(normalized_title, year, metas)
        if match is None:
            return None
        match_id = str(match.get("imdb_id") or match.get("id") or "").strip()
        if not match_id.startswith("tt"):
            return None
        return match_id

    async def fetch_episode_calendar(self, imdb_id: str) -> list[EpisodeCalendarEntry]:
        """Return the series' episodes ordered by season and episode."""

        if not imdb_id or not self._base_url:
            return []
        path = self._META_PATH.format(type="series", id=quote(imdb_id, safe=""))
        payload = await self._get_json(f"{self._base_url}{path}", imdb_id)
        if payload is None:
            return []
        meta = payload.get("meta") or {}
        videos = meta.get("videos") if isinstance(meta, dict) else None
        if not isinstance(videos, list):
            return []

        calendar: list[EpisodeCalendarEntry] = []
        for video in videos:
            if not isinstance(video, dict):
                continue
            season = parse_int(video.get("season"))
            episode = parse_int(video.get("episode") or video.get("number"))
            if season is None or episode is None or season < 0 or episode <= 0:
                continue
            title = video.get("name") or video.get("title")
            calendar.append(
                EpisodeCalendarEntry(
                    season=season,
                    episode=episode,
                    released=parse_date(video.get("released") or video.get("firstAired")),
                    title=str(title) if title else None,
                )
            )
        calendar.sort(key=lambda entry: (entry.season, entry.episode))
        return calendar

    async def _get_json(self, url: str, label: str) -> dict[str, Any] | None:
        response: httpx.Response | None = None
        max_attempts = 2
        for attempt in range(1, max_attempts + 1):
            try:
                async with self._semaphore:
                    response = await self._client.get(url)
                response.raise_for_status()
                break
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code if exc.response else None
                if status == 402 and attempt < max_attempts:
                    await asyncio.sleep(0.1)
                    continue
                logger.warning(
                    "Cinemeta request failed for %s via %s: %s",
                    label,
                    self._base_url,
                    exc,
                )
                return None
            except httpx.HTTPError as exc:
                logger.warning(
                    "Cinemeta request failed for %s via %s: %s",
                    label,
                    self._base_url,
                    exc,
                )
                return None
        else:
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning("Cinemeta returned invalid JSON for %s", label)
            return None
        if not isinstance(payload, dict):
            return None
        return payload

    def _select_best_match(
        self,
        title: str,
        year: int | None,
        metas: list[Any],
    ) -> dict[str, Any] | None:
        candidates: list[dict[str, Any]] = [
            meta for meta in metas if isinstance(meta, dict)
        ]
        if not candidates:
            return None

        target_slug = slugify(title)

        def candidate_year(meta: dict[str, Any]) -> int | None:
            return self._parse_year(meta.get("releaseInfo") or meta.get("year"))

        exact_title_matches = [
            meta
            for meta in candidates
            if slugify(str(meta.get("name") or "")) == target_slug
        ]
        if year is not None:
            exact_year_matches = [
                meta for meta in exact_title_matches if candidate_year(meta) == year
            ]
            if exact_year_matches:
                return exact_year_matches[0]
            if exact_title_matches:
                exact_title_matches.sort(
                    key=lambda meta: self._year_delta(candidate_year(meta), year)
                )
                return exact_title_matches[0]

        if exact_title_matches:
            return exact_title_matches[0]

        return candidates[0]

    @staticmethod
    def _year_delta(candidate: int | None, target: int) -> int:
        if candidate is None:
            return 1_000
        return abs(candidate - target)

    @staticmethod
    def _parse_year(value: Any) -> int | None:
        if isinstance(value, int):
            return value
        if not value:
            return None
        match = re.search(r"(19|20|21)\d{2}", str(value))
        if not match:
            return None
        year = int(match.group(0))
        if 1900 <= year <= 2100:
            return year
        return None

    @staticmethod
    def _normalize_base_url(value: str | None) -> str | None:
        if not value:
            return None
        normalized = value.strip()
        if not normalized:
            return None
        normalized = normalized.rstrip("/")
        lowered = normalized.lower()
        for suffix in ("/manifest.json", "/manifest"):
            if lowered.endswith(suffix):
                normalized = normalized[: -len(suffix)].rstrip("/")
                break
        return normalized or None
