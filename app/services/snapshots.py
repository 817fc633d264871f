"""Durable catalogue snapshots for fast cold starts."""

from __future__ import annotations

import logging

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import CatalogueSnapshot
from ..models import Movie
from .pool import CataloguePool, restore_pool

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "catalogue"


class CatalogueSnapshotStore:
    """Reads and writes the single persisted catalogue snapshot."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cache_key: str = SNAPSHOT_KEY,
    ) -> None:
        self._session_factory = session_factory
        self._cache_key = cache_key

    async def load(self) -> CataloguePool | None:
        """Return the stored pool, or ``None`` when nothing usable is saved."""

        async with self._session_factory() as session:
            record = await session.get(CatalogueSnapshot, self._cache_key)
            if record is None:
                return None
            raw_movies = list(record.movies or [])
            grouped = dict(record.grouped_by_bucket or {})
            updated_at = record.updated_at

        movies: list[Movie] = []
        for entry in raw_movies:
            try:
                movies.append(Movie.model_validate(entry))
            except ValidationError:
                logger.debug("Skipping malformed snapshot entry: %s", entry)
        if not movies:
            return None
        return restore_pool(movies, updated_at, bucket_order=list(grouped))

    async def save(self, pool: CataloguePool) -> None:
        """Persist ``pool``, replacing any previous snapshot."""

        movies = [movie.model_dump(mode="json", by_alias=True) for movie in pool.movies]
        grouped = {
            name: [movie.tmdb_id for movie in bucket]
            for name, bucket in pool.grouped.items()
        }
        async with self._session_factory() as session:
            record = await session.get(CatalogueSnapshot, self._cache_key)
            if record is None:
                record = CatalogueSnapshot(cache_key=self._cache_key)
                session.add(record)
            record.movies = movies
            record.grouped_by_bucket = grouped
            record.movie_count = len(movies)
            record.updated_at = pool.updated_at
            await session.commit()

