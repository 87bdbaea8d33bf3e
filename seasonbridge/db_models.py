"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class IdentityMapping(Base):
    """A learned set of cross-provider identifiers for one title."""

    __tablename__ = "id_mappings"
    __table_args__ = (
        UniqueConstraint(
            "content_type",
            "tmdb_id",
            "tvdb_id",
            "imdb_id",
            "tvmaze_id",
            name="uq_id_mapping_tuple",
        ),
        Index("idx_id_mappings_tmdb", "tmdb_id"),
        Index("idx_id_mappings_tvdb", "tvdb_id"),
        Index("idx_id_mappings_imdb", "imdb_id"),
        Index("idx_id_mappings_tvmaze", "tvmaze_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_type: Mapped[str] = mapped_column(String(16))
    tmdb_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tvdb_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    imdb_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tvmaze_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
