"""Persist and complete cross-provider identifier tuples."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import IdentityMapping
from ..models import IdentityTuple, MappingEntry, WesternId
from .mapping_index import MappingIndexLoader

logger = logging.getLogger(__name__)

_IDENTITY_COLUMNS = {
    "tmdb_id": IdentityMapping.tmdb_id,
    "tvdb_id": IdentityMapping.tvdb_id,
    "imdb_id": IdentityMapping.imdb_id,
    "tvmaze_id": IdentityMapping.tvmaze_id,
}


def normalize_identity(identity: IdentityTuple) -> IdentityTuple:
    """Strip whitespace and turn empty values into ``None``."""

    cleaned = {
        name: (str(value).strip() or None) if value is not None else None
        for name, value in identity.as_dict().items()
    }
    return IdentityTuple(**cleaned)


class IdentityStore:
    """Read and write learned identifier tuples in the ``id_mappings`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def lookup(
        self, content_type: str, partial: IdentityTuple
    ) -> IdentityTuple | None:
        """Return the first stored tuple sharing any identifier with ``partial``."""

        conditions = [
            _IDENTITY_COLUMNS[name] == value
            for name, value in normalize_identity(partial).as_dict().items()
            if value
        ]
        if not conditions:
            return None
        async with self._session_factory() as session:
            stmt = (
                select(IdentityMapping)
                .where(IdentityMapping.content_type == content_type, or_(*conditions))
                .limit(1)
            )
            result = await session.execute(stmt)
            record = result.scalar_one_or_none()
        if record is None:
            return None
        return IdentityTuple(
            tmdb_id=record.tmdb_id,
            tvdb_id=record.tvdb_id,
            imdb_id=record.imdb_id,
            tvmaze_id=record.tvmaze_id,
        )

    async def save(self, content_type: str, identity: IdentityTuple) -> bool:
        """Upsert the tuple; tuples with fewer than two ids are ignored."""

        identity = normalize_identity(identity)
        if identity.non_null_count() < 2:
            return False
        values = identity.as_dict()
        async with self._session_factory() as session:
            stmt = (
                select(IdentityMapping)
                .where(
                    IdentityMapping.content_type == content_type,
                    *(
                        _IDENTITY_COLUMNS[name].is_(None)
                        if value is None
                        else _IDENTITY_COLUMNS[name] == value
                        for name, value in values.items()
                    ),
                )
                .limit(1)
            )
            result = await session.execute(stmt)
            record = result.scalar_one_or_none()
            if record is None:
                session.add(IdentityMapping(content_type=content_type, **values))
            else:
                record.updated_at = datetime.utcnow()
            await session.commit()
        return True


class IdentityResolver:
    """Complete partial identifier sets from the store and the mapping index."""

    def __init__(self, store: IdentityStore, loader: MappingIndexLoader):
        self._store = store
        self._loader = loader

    async def resolve(self, content_type: str, partial: IdentityTuple) -> IdentityTuple:
        identity = normalize_identity(partial)
        try:
            stored = await self._store.lookup(content_type, identity)
        except SQLAlchemyError as exc:
            logger.warning("Identity lookup failed for %s: %s", identity, exc)
            stored = None
        identity = identity.merge(stored)
        identity = identity.merge(self._from_index(content_type, identity))

        if identity.non_null_count() >= 2:
            try:
                await self._store.save(content_type, identity)
            except SQLAlchemyError as exc:
                logger.warning("Identity save failed for %s: %s", identity, exc)
        return identity

    def _from_index(self, content_type: str, identity: IdentityTuple) -> IdentityTuple | None:
        index = self._loader.index
        candidates = (
            ("tvdb", identity.tvdb_id),
            ("tmdb", identity.tmdb_id),
            ("imdb", identity.imdb_id),
        )
        for provider, value in candidates:
            if not value:
                continue
            western_id = WesternId.parse(value if provider == "imdb" else f"{provider}:{value}")
            if western_id is None:
                continue
            for entry in index.siblings(western_id):
                if entry.content_type == content_type:
                    return self._entry_identity(entry)
        return None

    @staticmethod
    def _entry_identity(entry: MappingEntry) -> IdentityTuple:
        return IdentityTuple(
            tmdb_id=str(entry.tmdb_id) if entry.tmdb_id else None,
            tvdb_id=str(entry.tvdb_id) if entry.tvdb_id else None,
            imdb_id=entry.imdb_id,
        )
