"""Catalogue build, refresh and sampling behaviour."""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timedelta

import httpx
import pytest

from app.buckets import BucketDefinition, ListSource
from app.config import Settings
from app.errors import NotReady
from app.models import Movie
from app.services.catalogue import CatalogueCache
from app.services.pool import CataloguePool, build_pool
from app.services.title_lists import TitleCandidate


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


HORROR = BucketDefinition(
    key="horror",
    name="Horror",
    description="",
    sources=(ListSource("editorial", "horror-list"),),
)
COMEDY = BucketDefinition(
    key="comedy",
    name="Comedy",
    description="",
    sources=(ListSource("imdb", "ls-comedy"),),
)
NEW = BucketDefinition(
    key="new-releases",
    name="New Releases",
    description="",
    discovery="now-playing",
    fallback_params={"sort_by": "primary_release_date.desc"},
    new_release=True,
)
TEST_BUCKETS = (HORROR, COMEDY, NEW)


def _movie(tmdb_id: int, title: str, *genres: str) -> Movie:
    return Movie(id=tmdb_id, tmdb_id=tmdb_id, title=title, genres=list(genres))


class StubResolver:
    def __init__(
        self,
        by_title: dict[str, Movie],
        discovered: dict[str, list[Movie]] | None = None,
        fallback: dict[str, list[Movie]] | None = None,
        *,
        slow_buckets: set[str] | None = None,
    ) -> None:
        self.by_title = by_title
        self.discovered = discovered or {}
        self.fallback = fallback or {}
        self.slow_buckets = slow_buckets or set()
        self.calls: list[str] = []

    async def resolve_by_title(
        self, title: str, year: int | None = None, *, list_source: str = ""
    ) -> Movie | None:
        self.calls.append(f"title:{title}")
        movie = self.by_title.get(title)
        return movie.with_source(list_source) if movie else None

    async def resolve_by_id(self, tmdb_id: int, *, list_source: str = "") -> Movie | None:
        return None

    async def discover_by_bucket(
        self, bucket: BucketDefinition, *, fallback: bool = False, limit: int = 50
    ) -> list[Movie]:
        self.calls.append(f"discover:{bucket.key}:{fallback}")
        if bucket.key in self.slow_buckets:
            await asyncio.sleep(5)
        source = self.fallback if fallback else self.discovered
        return [movie.with_source(bucket.name) for movie in source.get(bucket.key, [])][:limit]


class StubTitles:
    def __init__(
        self, titles: dict[str, list[str]], *, broken: set[str] | None = None
    ) -> None:
        self.titles = titles
        self.broken = broken or set()

    async def fetch_titles(self, source: ListSource) -> list[TitleCandidate]:
        if source.ref in self.broken:
            raise httpx.ConnectError("list host unreachable")
        return [TitleCandidate(title) for title in self.titles.get(source.ref, [])]


class MemorySnapshots:
    def __init__(self, pool: CataloguePool | None = None) -> None:
        self.pool = pool
        self.saved: list[CataloguePool] = []

    async def load(self) -> CataloguePool | None:
        return self.pool

    async def save(self, pool: CataloguePool) -> None:
        self.saved.append(pool)
        self.pool = pool


LIBRARY = {
    "Alien": _movie(1, "Alien", "Horror", "Sci-Fi"),
    "Scream": _movie(2, "Scream", "Horror"),
    "Clue": _movie(3, "Clue", "Comedy"),
}


def _cache(
    resolver: StubResolver,
    titles: StubTitles,
    snapshots: MemorySnapshots | None = None,
    **overrides: object,
) -> CatalogueCache:
    settings = Settings(_env_file=None, **overrides)  # type: ignore[arg-type]
    return CatalogueCache(
        settings,
        resolver,
        titles,
        snapshots,
        buckets=TEST_BUCKETS,
        rng=random.Random(7),
    )


@pytest.mark.anyio("asyncio")
async def test_build_dedupes_by_tmdb_id_first_occurrence_wins() -> None:
    resolver = StubResolver(LIBRARY, discovered={"new-releases": [_movie(9, "Fresh", "Drama")]})
    titles = StubTitles({"horror-list": ["Alien", "Scream"], "ls-comedy": ["Alien", "Clue"]})
    snapshots = MemorySnapshots()
    cache = _cache(resolver, titles, snapshots)

    assert await cache.build() is True

    pool = cache.require_pool()
    assert [movie.tmdb_id for movie in pool.movies] == [1, 2, 3, 9]
    assert len({movie.tmdb_id for movie in pool.movies}) == len(pool)
    assert pool.get(1).list_source == "Horror"
    assert pool.bucket_counts() == {"Horror": 2, "Comedy": 1, "New Releases": 1}
    assert snapshots.saved == [pool]

    status = cache.status().to_payload()
    assert status["ready"] is True
    assert status["totalMovies"] == 4
    assert status["lastError"] is None


@pytest.mark.anyio("asyncio")
async def test_failing_bucket_contributes_nothing() -> None:
    resolver = StubResolver(LIBRARY)
    titles = StubTitles(
        {"horror-list": ["Alien", "Scream"], "ls-comedy": ["Clue"]},
        broken={"ls-comedy"},
    )
    cache = _cache(resolver, titles)

    assert await cache.build() is True

    assert [movie.title for movie in cache.require_pool().movies] == ["Alien", "Scream"]
    assert cache.status().failed_buckets == ["Comedy"]


@pytest.mark.anyio("asyncio")
async def test_slow_bucket_times_out_without_aborting_build() -> None:
    resolver = StubResolver(LIBRARY, slow_buckets={"new-releases"})
    titles = StubTitles({"horror-list": ["Scream"]})
    cache = _cache(resolver, titles, BUCKET_TIMEOUT_SECONDS=0.05)

    assert await cache.build() is True

    assert [movie.title for movie in cache.require_pool().movies] == ["Scream"]
    assert cache.status().failed_buckets == ["New Releases"]


@pytest.mark.anyio("asyncio")
async def test_empty_sources_fall_back_to_discovery() -> None:
    resolver = StubResolver(
        LIBRARY,
        fallback={"new-releases": [_movie(20, "Latest", "Drama"), _movie(21, "Newer")]},
    )
    cache = _cache(resolver, StubTitles({}))

    assert await cache.build() is True

    assert [movie.tmdb_id for movie in cache.require_pool().movies] == [20, 21]
    assert "discover:new-releases:True" in resolver.calls


@pytest.mark.anyio("asyncio")
async def test_empty_build_records_error_and_keeps_previous_pool() -> None:
    titles = StubTitles({"horror-list": ["Alien"], "ls-comedy": ["Clue"]})
    cache = _cache(StubResolver(LIBRARY), titles)
    assert await cache.build() is True
    previous = cache.pool

    titles.titles = {}
    assert await cache.build() is False

    assert cache.pool is previous
    status = cache.status()
    assert status.ready is True
    assert status.last_error == "Catalogue build produced no movies"


@pytest.mark.anyio("asyncio")
async def test_not_ready_until_first_successful_build() -> None:
    cache = _cache(StubResolver({}), StubTitles({}))

    assert await cache.build() is False
    assert cache.ready is False
    with pytest.raises(NotReady):
        cache.require_pool()
    with pytest.raises(NotReady):
        cache.sample_display()
    assert cache.status().last_error is not None


@pytest.mark.anyio("asyncio")
async def test_initialize_uses_fresh_snapshot_without_building() -> None:
    snapshot = build_pool([("Horror", [_movie(1, "Alien", "Horror")])])
    resolver = StubResolver(LIBRARY)
    cache = _cache(resolver, StubTitles({}), MemorySnapshots(snapshot))

    await cache.initialize()

    assert cache.pool is snapshot
    assert cache.refresh_job is None
    assert resolver.calls == []


@pytest.mark.anyio("asyncio")
async def test_initialize_serves_stale_snapshot_and_rebuilds_in_background() -> None:
    stale = build_pool(
        [("Horror", [_movie(1, "Alien", "Horror")])],
        updated_at=datetime.utcnow() - timedelta(hours=48),
    )
    resolver = StubResolver(LIBRARY)
    titles = StubTitles({"horror-list": ["Scream"], "ls-comedy": ["Clue"]})
    cache = _cache(resolver, titles, MemorySnapshots(stale))

    await cache.initialize()

    assert cache.pool is stale
    job = cache.refresh_job
    assert job is not None
    assert cache.request_refresh() is False
    await job

    assert [movie.title for movie in cache.require_pool().movies] == ["Scream", "Clue"]
    assert cache.refresh_job is None


@pytest.mark.anyio("asyncio")
async def test_initialize_without_snapshot_builds() -> None:
    titles = StubTitles({"horror-list": ["Alien"]})
    cache = _cache(StubResolver(LIBRARY), titles, MemorySnapshots())

    await cache.initialize()

    assert cache.ready is True


def _large_pool() -> CataloguePool:
    return build_pool(
        [
            (name, [_movie(offset + index, f"{name} {index}", name) for index in range(10)])
            for offset, name in ((0, "Horror"), (100, "Comedy"), (200, "Drama"))
        ]
    )


@pytest.mark.anyio("asyncio")
async def test_sample_display_caps_and_never_mutates_pool() -> None:
    pool = _large_pool()
    cache = _cache(StubResolver({}), StubTitles({}), MemorySnapshots(pool))
    await cache.initialize()
    original = pool.movies

    display = cache.sample_display(per_bucket=4, total=10)

    assert len(display.movies) == 10
    assert all(len(movies) <= 4 for movies in display.grouped.values())
    assert len({movie.tmdb_id for movie in display.movies}) == 10
    assert cache.pool is pool
    assert pool.movies == original

    payload = display.to_payload(grouped=True)
    assert set(payload) == {"movies", "grouped"}
    assert "grouped" not in display.to_payload()


@pytest.mark.anyio("asyncio")
async def test_sample_picks_and_find() -> None:
    pool = _large_pool()
    cache = _cache(
        StubResolver({}), StubTitles({}), MemorySnapshots(pool), DISPLAY_PER_BUCKET=2
    )
    await cache.initialize()

    picks = cache.sample_picks(6)

    assert len(picks) == 6
    assert len({movie.tmdb_id for movie in picks}) == 6
    assert all(pool.get(movie.tmdb_id) is movie for movie in picks)
    assert cache.find(105).title == "Comedy 5"
    assert cache.find(999) is None
