"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ANIME_LIST_URL = (
    "https://raw.githubusercontent.com/Fribb/anime-lists/refs/heads/master/"
    "anime-list-full.json"
)
DEFAULT_ANIME_OFFSETS_URL = (
    "https://raw.githubusercontent.com/Anime-Lists/anime-lists/refs/heads/master/"
    "anime-list-full.xml"
)
DEFAULT_KITSU_IMDB_MAPPING_URL = (
    "https://raw.githubusercontent.com/TheBeastLT/stremio-kitsu-anime/"
    "bbf149474f610885629b95b1b9ce4408c3c1353d/static/data/imdb_mapping.json"
)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="SeasonBridge", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    anime_list_url: HttpUrl = Field(
        default=DEFAULT_ANIME_LIST_URL, alias="ANIME_LIST_URL"
    )
    anime_offsets_url: HttpUrl = Field(
        default=DEFAULT_ANIME_OFFSETS_URL, alias="ANIME_OFFSETS_URL"
    )
    kitsu_imdb_mapping_url: HttpUrl | None = Field(
        default=DEFAULT_KITSU_IMDB_MAPPING_URL, alias="KITSU_IMDB_MAPPING_URL"
    )
    mapping_data_dir: Path = Field(default=Path("./data"), alias="MAPPING_DATA_DIR")
    mapping_refresh_hours: int = Field(
        default=24, alias="MAPPING_REFRESH_HOURS", ge=1, le=168
    )

    kitsu_api_url: HttpUrl = Field(
        default="https://kitsu.io/api/edge", alias="KITSU_API_URL"
    )
    cinemeta_url: HttpUrl = Field(
        default="https://v3-cinemeta.strem.io", alias="CINEMETA_URL"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./seasonbridge.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("kitsu_imdb_mapping_url", mode="before")
    @classmethod
    def _blank_disables_source(cls, value: object) -> object:
        """An empty value switches the optional Kitsu/IMDb table off."""

        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def mapping_refresh_seconds(self) -> int:
        return self.mapping_refresh_hours * 3_600

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
