"""Tests for the Kitsu detail client."""

from __future__ import annotations

from datetime import date

import httpx
import pytest

from seasonbridge.config import Settings
from seasonbridge.services.kitsu import KitsuClient


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def anime(local_id: int, subtype: str, start: str | None, episodes: int | None) -> dict:
    return {
        "id": str(local_id),
        "type": "anime",
        "attributes": {
            "canonicalTitle": f"Title {local_id}",
            "subtype": subtype,
            "startDate": start,
            "episodeCount": episodes,
        },
    }


@pytest.mark.anyio("asyncio")
async def test_fetch_details_batches_ids_in_pages() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        ids = [int(value) for value in request.url.params["filter[id]"].split(",")]
        return httpx.Response(
            200,
            json={"data": [anime(local_id, "TV", "2020-01-01", 12) for local_id in ids]},
        )

    async with httpx.AsyncClient(
        base_url="https://kitsu.example.com/api/edge",
        transport=httpx.MockTransport(handler),
    ) as http_client:
        client = KitsuClient(Settings(_env_file=None), http_client)
        details = await client.fetch_details(range(1, 46))

    assert len(requests) == 3
    assert all(request.url.path == "/api/edge/anime" for request in requests)
    assert requests[0].headers["accept"] == "application/vnd.api+json"
    assert sorted(details) == list(range(1, 46))
    assert details[7].subtype == "tv"
    assert details[7].start_date == date(2020, 1, 1)
    assert details[7].episode_count == 12
    assert details[7].title == "Title 7"


@pytest.mark.anyio("asyncio")
async def test_failed_page_only_loses_its_ids() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        ids = [int(value) for value in request.url.params["filter[id]"].split(",")]
        if 1 in ids:
            return httpx.Response(500)
        return httpx.Response(
            200, json={"data": [anime(local_id, "OVA", None, None) for local_id in ids]}
        )

    async with httpx.AsyncClient(
        base_url="https://kitsu.example.com/api/edge",
        transport=httpx.MockTransport(handler),
    ) as http_client:
        client = KitsuClient(Settings(_env_file=None), http_client)
        details = await client.fetch_details(range(1, 26))

    assert sorted(details) == list(range(21, 26))
    assert details[21].subtype == "ova"
    assert details[21].start_date is None


@pytest.mark.anyio("asyncio")
async def test_empty_request_skips_network() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - never called
        raise AssertionError("unexpected request")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = KitsuClient(Settings(_env_file=None), http_client)
        assert await client.fetch_details([]) == {}


@pytest.mark.anyio("asyncio")
async def test_malformed_row_only_loses_itself() -> None:
    broken = anime(2, "TV", "2021-01-01", 12)
    broken["attributes"]["canonicalTitle"] = None
    broken["attributes"]["titles"] = ["bad"]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"data": [anime(1, "TV", "2020-01-01", 12), broken, "garbage"]}
        )

    async with httpx.AsyncClient(
        base_url="https://kitsu.example.com/api/edge",
        transport=httpx.MockTransport(handler),
    ) as http_client:
        client = KitsuClient(Settings(_env_file=None), http_client)
        details = await client.fetch_details([1, 2])

    assert sorted(details) == [1, 2]
    assert details[1].title == "Title 1"
    assert details[2].title is None
    assert details[2].start_date == date(2021, 1, 1)
