"""Domain records shared by the mapping index and the resolvers."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field, fields, replace
from datetime import date
from typing import Any, Iterable, Literal

from pydantic import BaseModel, Field

from .utils import parse_positive_int

Subtype = Literal["tv", "movie", "ova", "ona", "special", "other"]
WesternProvider = Literal["tvdb", "tmdb", "imdb"]
ResolutionMode = Literal["absolute", "direct", "range", "pair", "offset-heuristic"]
AlignmentStrategy = Literal["passthrough", "air-date", "episode-number", "synthetic"]

SUBTYPES: frozenset[str] = frozenset({"tv", "movie", "ova", "ona", "special", "other"})
SUPPLEMENTARY_SUBTYPES: frozenset[str] = frozenset({"ova", "ona"})
SERIES_LIKE_SUBTYPES: frozenset[str] = frozenset({"tv", "ova", "ona", "special"})

ABSOLUTE = "absolute"
UNASSIGNED = "unassigned-multi-season"
TargetSeason = int | Literal["absolute", "unassigned-multi-season"]


def normalize_subtype(value: Any) -> Subtype:
    """Map catalog subtype spellings (``TV``, ``OVA``...) onto :data:`Subtype`."""

    if not isinstance(value, str):
        return "other"
    lowered = value.strip().lower()
    if lowered in SUBTYPES:
        return lowered  # type: ignore[return-value]
    return "other"


@dataclass(frozen=True, slots=True)
class WesternId:
    """A TVDB, TMDB or IMDb identifier tagged with its provider."""

    provider: WesternProvider
    value: str

    @classmethod
    def parse(cls, raw: "str | WesternId") -> "WesternId | None":
        """Parse ``tvdb:123``, ``tmdb:123``, ``imdb:tt123`` or ``tt123``."""

        if isinstance(raw, WesternId):
            return raw
        text = str(raw or "").strip()
        if not text:
            return None
        if text.startswith("tt"):
            return cls("imdb", text)
        prefix, _, value = text.partition(":")
        prefix = prefix.lower()
        value = value.strip()
        if prefix == "imdb" and value.startswith("tt"):
            return cls("imdb", value)
        if prefix in ("tvdb", "tmdb"):
            number = parse_positive_int(value)
            if number is None:
                return None
            return cls(prefix, str(number))  # type: ignore[arg-type]
        return None

    def __str__(self) -> str:
        if self.provider == "imdb":
            return self.value
        return f"{self.provider}:{self.value}"


@dataclass(frozen=True, slots=True)
class MappingEntry:
    """One row of the flat cross-catalog identifier table."""

    local_id: int | None
    subtype: Subtype
    title: str | None = None
    mal_id: int | None = None
    anidb_id: int | None = None
    anilist_id: int | None = None
    tvdb_id: int | None = None
    tmdb_id: int | None = None
    imdb_id: str | None = None
    position: int = 0

    def western_ids(self) -> list[WesternId]:
        ids: list[WesternId] = []
        if self.tvdb_id:
            ids.append(WesternId("tvdb", str(self.tvdb_id)))
        if self.tmdb_id:
            ids.append(WesternId("tmdb", str(self.tmdb_id)))
        if self.imdb_id:
            ids.append(WesternId("imdb", self.imdb_id))
        return ids

    @property
    def content_type(self) -> str:
        return "series" if self.subtype in SERIES_LIKE_SUBTYPES else "movie"


@dataclass(frozen=True, slots=True)
class EpisodeRange:
    """A ``<mapping>`` element of the episode-offset table."""

    source_season: int | None
    target_season: int | None
    start: int | None = None
    end: int | None = None
    offset: int = 0
    episode_pairs: tuple[tuple[int, int], ...] = ()

    @property
    def has_window(self) -> bool:
        return self.start is not None and self.end is not None

    def target_for_pair(self, source_episode: int) -> int | None:
        """Return the explicitly paired target episode, if one is listed."""

        for target_episode, paired_source in self.episode_pairs:
            if paired_source == source_episode and target_episode > 0:
                return target_episode
        return None


@dataclass(frozen=True, slots=True)
class OffsetMapping:
    """One ``<anime>`` row of the episode-offset table."""

    anidb_id: int
    default_target_season: TargetSeason
    episode_offset: int = 0
    explicit_ranges: tuple[EpisodeRange, ...] = ()
    tvdb_id: int | None = None
    tmdb_tv_id: int | None = None
    imdb_ids: tuple[str, ...] = ()
    name: str | None = None
    position: int = 0

    def ranges_for(self, source_season: int) -> list[EpisodeRange]:
        return [
            mapping
            for mapping in self.explicit_ranges
            if mapping.source_season == source_season
        ]


@dataclass(frozen=True, slots=True)
class ImdbAnchor:
    """Where a Kitsu title starts inside an IMDb series."""

    local_id: int
    imdb_id: str
    title: str | None = None
    from_season: int | None = None
    from_episode: int | None = None
    non_imdb_episodes: frozenset[int] = frozenset()


@dataclass(frozen=True, slots=True)
class AnimeDetail:
    """Detail provider view of an Eastern catalog title."""

    local_id: int
    subtype: Subtype
    start_date: date | None = None
    episode_count: int | None = None
    title: str | None = None


@dataclass(frozen=True, slots=True)
class EpisodeCalendarEntry:
    season: int
    episode: int
    released: date | None = None
    title: str | None = None


@dataclass(frozen=True, slots=True)
class ResolvedEpisode:
    """Result of translating a Western season/episode into AniDB numbering.

    ``confident`` is ``False`` when the match came from the offset-order
    heuristic rather than from an explicit range or a single sibling.
    """

    anidb_id: int
    season: int
    episode: int
    mode: ResolutionMode
    confident: bool = True
    local_id: int | None = None


@dataclass(frozen=True, slots=True)
class AbsoluteEpisode:
    absolute_episode: int
    season: int
    local_id: int
    episode: int


@dataclass(frozen=True, slots=True)
class LayoutSegment:
    season: int
    local_id: int
    first_absolute: int
    episode_count: int

    @property
    def last_absolute(self) -> int:
        return self.first_absolute + self.episode_count - 1


@dataclass(frozen=True, slots=True)
class AbsoluteEpisodeLayout:
    """Absolute episode numbers laid out over consecutive seasons.

    Segments are contiguous from 1. A season without a known episode count
    ends the layout, so upstream gaps give a shorter map rather than a hole.
    """

    segments: tuple[LayoutSegment, ...] = ()

    @classmethod
    def from_seasons(
        cls, seasons: Iterable[tuple[int, int, int | None]]
    ) -> "AbsoluteEpisodeLayout":
        """Build from ``(season_number, local_id, episode_count)`` in air order."""

        segments: list[LayoutSegment] = []
        next_absolute = 1
        for season, local_id, episode_count in seasons:
            if not episode_count or episode_count <= 0:
                break
            segments.append(LayoutSegment(season, local_id, next_absolute, episode_count))
            next_absolute += episode_count
        return cls(tuple(segments))

    @property
    def total(self) -> int:
        if not self.segments:
            return 0
        return self.segments[-1].last_absolute

    def locate(self, absolute_episode: int) -> AbsoluteEpisode | None:
        if absolute_episode < 1 or absolute_episode > self.total:
            return None
        starts = [segment.first_absolute for segment in self.segments]
        segment = self.segments[bisect_right(starts, absolute_episode) - 1]
        return AbsoluteEpisode(
            absolute_episode=absolute_episode,
            season=segment.season,
            local_id=segment.local_id,
            episode=absolute_episode - segment.first_absolute + 1,
        )


@dataclass(frozen=True, slots=True)
class AlignedEpisode:
    """Episode address in the target catalog, or the synthetic fallback."""

    catalog_id: str
    season: int
    episode: int
    strategy: AlignmentStrategy

    @property
    def matched(self) -> bool:
        return self.strategy != "synthetic"

    @property
    def stremio_id(self) -> str:
        return f"{self.catalog_id}:{self.season}:{self.episode}"


@dataclass(slots=True)
class IdentityTuple:
    """Cross-provider identifier set persisted by the identity store."""

    tmdb_id: str | None = None
    tvdb_id: str | None = None
    imdb_id: str | None = None
    tvmaze_id: str | None = None

    def non_null_count(self) -> int:
        return sum(1 for value in self.as_dict().values() if value)

    def as_dict(self) -> dict[str, str | None]:
        return {item.name: getattr(self, item.name) for item in fields(self)}

    def merge(self, other: "IdentityTuple | None") -> "IdentityTuple":
        """Return a copy with gaps filled from ``other``; own values win."""

        if other is None:
            return replace(self)
        updates = {
            name: other_value
            for name, other_value in other.as_dict().items()
            if not getattr(self, name) and other_value
        }
        return replace(self, **updates)


class FranchiseSeasonInfo(BaseModel):
    """One season slot of a franchise map with the details behind it."""

    local_id: int
    title: str | None = None
    subtype: str
    start_date: date | None = None
    episode_count: int | None = None
    mapping_type: Literal["tv_series", "ova_ona"]

    def to_payload(self) -> dict[str, Any]:
        return {
            "kitsuId": self.local_id,
            "title": self.title,
            "subtype": self.subtype,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "episodeCount": self.episode_count,
            "mappingType": self.mapping_type,
        }


class FranchiseDebugInfo(BaseModel):
    """Diagnostic view of how a Western id decomposes into Eastern seasons."""

    western_id: str
    generation: int
    seasons: dict[int, FranchiseSeasonInfo] = Field(default_factory=dict)
    mapping_scenario: str
    tv_series_count: int = 0
    ova_count: int = 0
    supplementary_ids: list[int] = Field(default_factory=list)
    sibling_ids: list[int] = Field(default_factory=list)

    @property
    def available_season_numbers(self) -> list[int]:
        return sorted(self.seasons)

    @property
    def needs_episode_mapping(self) -> bool:
        return self.tv_series_count > 1

    def to_payload(self) -> dict[str, Any]:
        return {
            "westernId": self.western_id,
            "generation": self.generation,
            "totalSeasons": len(self.seasons),
            "availableSeasonNumbers": self.available_season_numbers,
            "seasons": {
                str(number): self.seasons[number].to_payload()
                for number in self.available_season_numbers
            },
            "mappingScenario": self.mapping_scenario,
            "tvSeriesCount": self.tv_series_count,
            "ovaCount": self.ova_count,
            "needsEpisodeMapping": self.needs_episode_mapping,
            "supplementaryIds": list(self.supplementary_ids),
            "siblingIds": list(self.sibling_ids),
        }


@dataclass(slots=True)
class SourceSeason:
    number: int
    name: str | None = None


@dataclass(slots=True)
class SourceSeries:
    """A source catalog series that needs its episodes aligned to a target.

    ``catalog`` and ``catalog_id`` name the source (``tmdb`` / ``1234``) and
    build the synthetic fallback id; ``target_id`` is the canonical (IMDb)
    series id whose calendar serves as ground truth.
    """

    catalog: str
    catalog_id: str
    name: str
    seasons: list[SourceSeason] = field(default_factory=list)
    target_id: str | None = None
    is_anime: bool = False

    @property
    def numbered_seasons(self) -> list[SourceSeason]:
        return [season for season in self.seasons if season.number != 0]

    @property
    def synthetic_prefix(self) -> str:
        return f"{self.catalog}:{self.catalog_id}"
