"""Tests for the Cinemeta lookup and calendar client."""

from __future__ import annotations

from datetime import date

import httpx
import pytest

from seasonbridge.services.cinemeta import CinemetaClient


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("https://v3-cinemeta.strem.io/manifest.json", "https://v3-cinemeta.strem.io"),
        ("https://addons.example.com/custom/", "https://addons.example.com/custom"),
        ("https://addons.example.com/custom/manifest", "https://addons.example.com/custom"),
        (None, None),
        ("   ", None),
    ],
)
def test_normalize_base_url(raw: str | None, expected: str | None) -> None:
    assert CinemetaClient._normalize_base_url(raw) == expected


@pytest.mark.anyio("asyncio")
async def test_lookup_prefers_slug_and_year_match() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(
            200,
            json={
                "metas": [
                    {"id": "tt1", "name": "Dan Da Dan Special", "releaseInfo": "2024"},
                    {"id": "tt2", "name": "Dan Da Dan", "releaseInfo": "2019"},
                    {"id": "tt3", "name": "Dan Da Dan", "releaseInfo": "2024-"},
                ]
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = CinemetaClient(http_client, "https://cinemeta.example.com/manifest.json")
        with_year = await client.lookup_imdb_id("Dan Da Dan", year=2024)
        without_year = await client.lookup_imdb_id("Dan Da Dan")

    assert with_year == "tt3"
    assert without_year == "tt2"
    assert seen[0] == "/catalog/series/top/search=Dan Da Dan.json"


@pytest.mark.anyio("asyncio")
async def test_lookup_failure_returns_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = CinemetaClient(http_client, "https://cinemeta.example.com")
        assert await client.lookup_imdb_id("Anything") is None
        assert await client.fetch_episode_calendar("tt1") == []


@pytest.mark.anyio("asyncio")
async def test_episode_calendar_is_sorted_and_filtered() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/meta/series/tt2560140.json"
        return httpx.Response(
            200,
            json={
                "meta": {
                    "id": "tt2560140",
                    "videos": [
                        {"season": 2, "episode": 1, "released": "2017-04-01T00:00:00.000Z", "name": "Beast Titan"},
                        {"season": 1, "episode": 2, "released": "2013-04-13T00:00:00.000Z"},
                        {"season": 1, "number": 1, "released": "2013-04-06T00:00:00.000Z"},
                        {"season": 1, "episode": 0},
                        {"season": "x", "episode": 3},
                        "junk",
                    ],
                }
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = CinemetaClient(http_client, "https://cinemeta.example.com")
        calendar = await client.fetch_episode_calendar("tt2560140")

    assert [(entry.season, entry.episode) for entry in calendar] == [(1, 1), (1, 2), (2, 1)]
    assert calendar[0].released == date(2013, 4, 6)
    assert calendar[2].title == "Beast Titan"
