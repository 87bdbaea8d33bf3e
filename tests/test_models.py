"""Tests for the shared domain records."""

from __future__ import annotations

from datetime import date

import pytest

from seasonbridge.models import (
    AbsoluteEpisodeLayout,
    AlignedEpisode,
    FranchiseDebugInfo,
    FranchiseSeasonInfo,
    IdentityTuple,
    WesternId,
    normalize_subtype,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("tvdb:81797", WesternId("tvdb", "81797")),
        ("tmdb:37854", WesternId("tmdb", "37854")),
        ("TMDB:37854", WesternId("tmdb", "37854")),
        ("imdb:tt0388629", WesternId("imdb", "tt0388629")),
        ("tt0388629", WesternId("imdb", "tt0388629")),
        ("tvdb:abc", None),
        ("kitsu:12", None),
        ("", None),
    ],
)
def test_western_id_parse(raw: str, expected: WesternId | None) -> None:
    assert WesternId.parse(raw) == expected


def test_western_id_renders_canonical_form() -> None:
    assert str(WesternId("tvdb", "1")) == "tvdb:1"
    assert str(WesternId("imdb", "tt1")) == "tt1"


def test_normalize_subtype_maps_unknown_values_to_other() -> None:
    assert normalize_subtype("TV") == "tv"
    assert normalize_subtype("OVA") == "ova"
    assert normalize_subtype("music") == "other"
    assert normalize_subtype(None) == "other"


def test_identity_tuple_merge_keeps_own_values() -> None:
    identity = IdentityTuple(tmdb_id="1", imdb_id=None)
    merged = identity.merge(IdentityTuple(tmdb_id="2", imdb_id="tt9", tvdb_id="5"))

    assert merged == IdentityTuple(tmdb_id="1", tvdb_id="5", imdb_id="tt9")
    assert merged.non_null_count() == 3
    assert identity.non_null_count() == 1


def test_absolute_layout_is_contiguous_and_unique() -> None:
    layout = AbsoluteEpisodeLayout.from_seasons([(1, 100, 12), (2, 200, 13), (3, 300, 11)])

    assert layout.total == 36
    located = [layout.locate(number) for number in range(1, layout.total + 1)]
    assert all(item is not None for item in located)
    pairs = [(item.season, item.episode) for item in located if item]
    assert len(set(pairs)) == len(pairs)
    assert pairs[0] == (1, 1)
    assert pairs[12] == (2, 1)
    assert pairs[-1] == (3, 11)
    assert layout.locate(13) == layout.locate(13)
    assert layout.locate(0) is None
    assert layout.locate(37) is None


def test_absolute_layout_stops_at_unknown_episode_count() -> None:
    layout = AbsoluteEpisodeLayout.from_seasons([(1, 100, 12), (2, 200, None), (3, 300, 11)])

    assert layout.total == 12
    assert layout.locate(13) is None


def test_aligned_episode_stremio_id() -> None:
    aligned = AlignedEpisode("tt123", 2, 5, "air-date")
    synthetic = AlignedEpisode("tmdb:99", 2, 5, "synthetic")

    assert aligned.stremio_id == "tt123:2:5"
    assert aligned.matched
    assert not synthetic.matched


def test_franchise_debug_payload_uses_camel_case() -> None:
    info = FranchiseDebugInfo(
        western_id="tvdb:1",
        generation=3,
        seasons={
            1: FranchiseSeasonInfo(
                local_id=10,
                subtype="tv",
                start_date=date(2020, 1, 1),
                mapping_type="tv_series",
            )
        },
        mapping_scenario="single_tv_series",
        tv_series_count=1,
    )

    payload = info.to_payload()

    assert payload["availableSeasonNumbers"] == [1]
    assert payload["needsEpisodeMapping"] is False
    assert payload["seasons"]["1"]["startDate"] == "2020-01-01"
