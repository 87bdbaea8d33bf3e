"""Client for the Kitsu JSON:API used as the anime detail provider."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

import httpx

from ..config import Settings
from ..models import AnimeDetail, normalize_subtype
from ..utils import parse_date, parse_positive_int

logger = logging.getLogger(__name__)


class KitsuClient:
    """Thin wrapper around the Kitsu anime endpoints."""

    page_size = 20

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._semaphore = asyncio.Semaphore(4)

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/vnd.api+json",
            "Content-Type": "application/vnd.api+json",
            "User-Agent": f"{self._settings.app_name} (seasonbridge)",
        }

    async def fetch_details(self, local_ids: Iterable[int]) -> dict[int, AnimeDetail]:
        """Return details for every id Kitsu knows about.

        Ids are requested in pages of :attr:`page_size` concurrently. A failed
        page only loses the ids it carried.
        """

        unique_ids = sorted({local_id for local_id in local_ids if local_id})
        if not unique_ids:
            return {}
        chunks = [
            unique_ids[start : start + self.page_size]
            for start in range(0, len(unique_ids), self.page_size)
        ]
        results = await asyncio.gather(
            *(self._fetch_chunk(chunk) for chunk in chunks), return_exceptions=True
        )

        details: dict[int, AnimeDetail] = {}
        for chunk, result in zip(chunks, results):
            if isinstance(result, BaseException):
                logger.warning("Kitsu detail request for %s failed: %s", chunk, result)
                continue
            details.update(result)
        return details

    async def _fetch_chunk(self, chunk: list[int]) -> dict[int, AnimeDetail]:
        params = {
            "filter[id]": ",".join(str(local_id) for local_id in chunk),
            "page[limit]": str(self.page_size),
        }
        async with self._semaphore:
            response = await self._client.get(
                "/anime", params=params, headers=self._headers()
            )
        response.raise_for_status()
        payload = response.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            return {}

        details: dict[int, AnimeDetail] = {}
        for item in data:
            detail = self._parse_detail(item)
            if detail is not None:
                details[detail.local_id] = detail
        return details

    @staticmethod
    def _parse_detail(item: Any) -> AnimeDetail | None:
        if not isinstance(item, dict):
            return None
        local_id = parse_positive_int(item.get("id"))
        if local_id is None:
            return None
        attributes = item.get("attributes") or {}
        if not isinstance(attributes, dict):
            attributes = {}
        titles = attributes.get("titles")
        if not isinstance(titles, dict):
            titles = {}
        title = attributes.get("canonicalTitle") or titles.get("en")
        return AnimeDetail(
            local_id=local_id,
            subtype=normalize_subtype(attributes.get("subtype")),
            start_date=parse_date(attributes.get("startDate")),
            episode_count=parse_positive_int(attributes.get("episodeCount")),
            title=str(title) if title else None,
        )
