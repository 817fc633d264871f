"""The immutable movie pool shared between the catalogue and pair selection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence

from ..models import Movie


@dataclass(frozen=True, slots=True)
class CataloguePool:
    """Deduplicated movies plus their grouping by ``list_source``.

    A pool is never mutated after construction; rebuilds swap in a new one.
    """

    movies: tuple[Movie, ...]
    grouped: Mapping[str, tuple[Movie, ...]]
    updated_at: datetime
    _by_id: Mapping[int, Movie] = field(repr=False, compare=False, default_factory=dict)

    def __len__(self) -> int:
        return len(self.movies)

    def __bool__(self) -> bool:
        return bool(self.movies)

    def get(self, tmdb_id: int) -> Movie | None:
        return self._by_id.get(tmdb_id)

    def bucket_counts(self) -> dict[str, int]:
        return {name: len(movies) for name, movies in self.grouped.items()}

    def age_seconds(self, now: datetime | None = None) -> float:
        reference = now or datetime.utcnow()
        return max(0.0, (reference - self.updated_at).total_seconds())


def build_pool(
    buckets: Iterable[tuple[str, Sequence[Movie]]],
    *,
    updated_at: datetime | None = None,
) -> CataloguePool:
    """Merge bucket results into a pool, keeping the first copy of each film.

    ``buckets`` is consumed in order; a movie that shows up again under a
    later bucket keeps the provenance of its first occurrence.
    """

    movies: list[Movie] = []
    seen: set[int] = set()
    grouped: dict[str, list[Movie]] = {}
    for bucket_name, bucket_movies in buckets:
        grouped.setdefault(bucket_name, [])
        for movie in bucket_movies:
            if movie.tmdb_id in seen:
                continue
            seen.add(movie.tmdb_id)
            tagged = movie.with_source(bucket_name)
            movies.append(tagged)
            grouped[bucket_name].append(tagged)
    return _freeze(movies, grouped, updated_at or datetime.utcnow())


def restore_pool(
    movies: Sequence[Movie],
    updated_at: datetime,
    *,
    bucket_order: Sequence[str] = (),
) -> CataloguePool:
    """Rebuild a pool from a persisted movie list, regrouping by provenance."""

    ordered: dict[str, list[Movie]] = {name: [] for name in bucket_order}
    for movie in movies:
        ordered.setdefault(movie.list_source, []).append(movie)
    return build_pool(ordered.items(), updated_at=updated_at)


def _freeze(
    movies: list[Movie], grouped: dict[str, list[Movie]], updated_at: datetime
) -> CataloguePool:
    return CataloguePool(
        movies=tuple(movies),
        grouped=MappingProxyType(
            {name: tuple(items) for name, items in grouped.items() if items}
        ),
        updated_at=updated_at,
        _by_id=MappingProxyType({movie.tmdb_id: movie for movie in movies}),
    )
