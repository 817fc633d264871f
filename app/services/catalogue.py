"""Build, persist and serve the in-memory movie catalogue."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, Sequence

from ..buckets import BucketDefinition, ListSource
from ..config import Settings
from ..errors import NotReady, UpstreamResolutionFailure
from ..models import Movie
from ..utils import sample, shuffled
from .pool import CataloguePool, build_pool
from .title_lists import TitleCandidate, dedupe_titles

logger = logging.getLogger(__name__)


class MetadataResolver(Protocol):
    async def resolve_by_title(
        self, title: str, year: int | None = None, *, list_source: str = ""
    ) -> Movie | None: ...

    async def resolve_by_id(
        self, tmdb_id: int, *, list_source: str = ""
    ) -> Movie | None: ...

    async def discover_by_bucket(
        self, bucket: BucketDefinition, *, fallback: bool = False, limit: int = 50
    ) -> list[Movie]: ...


class TitleSource(Protocol):
    async def fetch_titles(self, source: ListSource) -> list[TitleCandidate]: ...


class SnapshotStore(Protocol):
    async def load(self) -> CataloguePool | None: ...

    async def save(self, pool: CataloguePool) -> None: ...


@dataclass(slots=True)
class DisplayCatalogue:
    """A shuffled, bounded sample of the pool for background browsing."""

    movies: list[Movie]
    grouped: dict[str, list[Movie]] = field(default_factory=dict)

    @classmethod
    def from_movies(cls, movies: list[Movie]) -> "DisplayCatalogue":
        grouped: dict[str, list[Movie]] = {}
        for movie in movies:
            grouped.setdefault(movie.list_source, []).append(movie)
        return cls(movies=movies, grouped=grouped)

    def to_payload(self, *, grouped: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {"movies": [movie.to_payload() for movie in self.movies]}
        if grouped:
            payload["grouped"] = {
                name: [movie.to_payload() for movie in movies]
                for name, movies in self.grouped.items()
            }
        return payload


@dataclass(slots=True)
class CatalogueStatus:
    """Runtime view of the catalogue for health endpoints."""

    ready: bool
    building: bool
    total_movies: int
    bucket_counts: dict[str, int]
    last_updated: datetime | None
    last_error: str | None
    failed_buckets: list[str]

    def to_payload(self) -> dict[str, Any]:
        return {
            "ready": self.ready,
            "building": self.building,
            "totalMovies": self.total_movies,
            "buckets": self.bucket_counts,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
            "lastError": self.last_error,
            "failedBuckets": self.failed_buckets,
        }


class CatalogueCache:
    """Owns the movie pool and its build/refresh lifecycle.

    Readers always see either the previous or the freshly built pool: builds
    assemble a new :class:`CataloguePool` off to the side and swap the
    reference in a single assignment.
    """

    def __init__(
        self,
        settings: Settings,
        resolver: MetadataResolver,
        title_lists: TitleSource,
        snapshots: SnapshotStore | None = None,
        *,
        buckets: Sequence[BucketDefinition] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings
        self._resolver = resolver
        self._title_lists = title_lists
        self._snapshots = snapshots
        self._buckets = tuple(buckets if buckets is not None else settings.bucket_definitions)
        self._rng = rng or random.Random()
        self._pool: CataloguePool | None = None
        self._building = False
        self._last_error: str | None = None
        self._failed_buckets: list[str] = []
        self._init_task: asyncio.Task[None] | None = None
        self._refresh_task: asyncio.Task[None] | None = None
        self._refresh_job: asyncio.Task[None] | None = None
        self._refresh_poll_seconds = 600

    @property
    def ready(self) -> bool:
        return self._pool is not None and bool(self._pool)

    @property
    def pool(self) -> CataloguePool | None:
        return self._pool

    @property
    def buckets(self) -> tuple[BucketDefinition, ...]:
        return self._buckets

    @property
    def refresh_job(self) -> asyncio.Task[None] | None:
        return self._refresh_job

    def require_pool(self) -> CataloguePool:
        pool = self._pool
        if pool is None or not pool:
            raise NotReady()
        return pool

    async def start(self) -> None:
        """Kick off initialisation and the refresh loop without blocking."""

        if self._init_task is None:
            self._init_task = asyncio.create_task(self.initialize())
        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        """Cancel background initialisation, refresh loop and pending rebuilds."""

        for task in (self._init_task, self._refresh_task, self._refresh_job):
            if task is None or task.done():
                continue
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._init_task = None
        self._refresh_task = None
        self._refresh_job = None

    async def initialize(self) -> None:
        """Serve the persisted snapshot if there is one, otherwise build."""

        snapshot = await self._load_snapshot()
        if snapshot is not None:
            self._pool = snapshot
            age = snapshot.age_seconds()
            if age <= self._settings.catalogue_ttl_seconds:
                logger.info(
                    "Loaded catalogue snapshot with %s movies (%.0f minutes old)",
                    len(snapshot),
                    age / 60,
                )
            else:
                logger.info(
                    "Catalogue snapshot is %.1f hours old; rebuilding in the background",
                    age / 3_600,
                )
                self.request_refresh()
            return
        await self.build()

    async def build(self) -> bool:
        """Rebuild the pool from every bucket. Never raises.

        Returns ``True`` when a non-empty pool was installed.
        """

        self._building = True
        started = time.monotonic()
        logger.info("Building movie catalogue from %s buckets", len(self._buckets))
        try:
            failures: list[str] = []
            results = await self._collect_buckets(fallback=False, failures=failures)
            if not any(movies for _, movies in results):
                logger.warning(
                    "Every catalogue bucket came back empty; trying discovery fallback"
                )
                failures = []
                results = await self._collect_buckets(fallback=True, failures=failures)
            self._failed_buckets = failures

            pool = build_pool(results)
            if not pool:
                self._last_error = "Catalogue build produced no movies"
                logger.error(
                    "Catalogue build produced no movies; keeping the previous pool"
                )
                return False

            self._pool = pool
            self._last_error = None
            logger.info(
                "Catalogue built: %s movies across %s buckets in %.1fs",
                len(pool),
                len(pool.grouped),
                time.monotonic() - started,
            )
            await self._save_snapshot(pool)
            return True
        except Exception as exc:  # background safety net
            logger.exception("Catalogue build failed: %s", exc)
            self._last_error = str(exc) or exc.__class__.__name__
            return False
        finally:
            self._building = False

    def request_refresh(self) -> bool:
        """Schedule a background rebuild unless one is already running."""

        if self._building:
            return False
        existing = self._refresh_job
        if existing is not None and not existing.done():
            return False

        async def _runner() -> None:
            try:
                await self.build()
            finally:
                self._refresh_job = None

        self._refresh_job = asyncio.create_task(_runner())
        return True

    def refresh_due(self) -> bool:
        pool = self._pool
        if pool is None or not pool:
            return not self._building
        return pool.age_seconds() >= self._settings.catalogue_ttl_seconds

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_poll_seconds)
            try:
                if self.refresh_due():
                    self.request_refresh()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Scheduled catalogue refresh failed: %s", exc)

    async def _collect_buckets(
        self, *, fallback: bool, failures: list[str]
    ) -> list[tuple[str, list[Movie]]]:
        results = await asyncio.gather(
            *(self._guarded_bucket(bucket, fallback=fallback) for bucket in self._buckets),
            return_exceptions=True,
        )
        collected: list[tuple[str, list[Movie]]] = []
        for bucket, result in zip(self._buckets, results):
            if isinstance(result, BaseException):
                logger.warning("Bucket %s contributed no movies: %s", bucket.name, result)
                failures.append(bucket.name)
                collected.append((bucket.name, []))
                continue
            logger.info("Resolved %s movies for %s", len(result), bucket.name)
            collected.append((bucket.name, result))
        return collected

    async def _guarded_bucket(
        self, bucket: BucketDefinition, *, fallback: bool
    ) -> list[Movie]:
        limit = self._settings.catalogue_movies_per_bucket
        if fallback:
            work = self._resolver.discover_by_bucket(bucket, fallback=True, limit=limit)
        else:
            work = self._collect_bucket(bucket, limit=limit)
        try:
            return await asyncio.wait_for(
                work, timeout=self._settings.bucket_timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamResolutionFailure(bucket.name, "timed out") from exc
        except Exception as exc:
            raise UpstreamResolutionFailure(
                bucket.name, str(exc) or exc.__class__.__name__
            ) from exc

    async def _collect_bucket(
        self, bucket: BucketDefinition, *, limit: int
    ) -> list[Movie]:
        movies: list[Movie] = []
        if bucket.uses_discovery:
            movies.extend(await self._resolver.discover_by_bucket(bucket, limit=limit))

        candidates: list[TitleCandidate] = []
        for source in bucket.sources:
            candidates.extend(await self._title_lists.fetch_titles(source))
        candidates = dedupe_titles(candidates)[: max(0, limit - len(movies))]
        if not candidates:
            return movies

        resolved = await asyncio.gather(
            *(
                self._resolver.resolve_by_title(
                    candidate.title, candidate.year, list_source=bucket.name
                )
                for candidate in candidates
            ),
            return_exceptions=True,
        )
        for candidate, result in zip(candidates, resolved):
            if isinstance(result, Movie):
                movies.append(result)
            elif isinstance(result, BaseException):
                logger.debug("Resolution failed for %s: %s", candidate.title, result)
        return movies

    async def _load_snapshot(self) -> CataloguePool | None:
        if self._snapshots is None:
            return None
        try:
            return await self._snapshots.load()
        except Exception as exc:
            logger.warning("Could not load catalogue snapshot: %s", exc)
            return None

    async def _save_snapshot(self, pool: CataloguePool) -> None:
        if self._snapshots is None:
            return
        try:
            await self._snapshots.save(pool)
        except Exception as exc:
            logger.warning("Could not persist catalogue snapshot: %s", exc)

    def sample_display(
        self, per_bucket: int | None = None, total: int | None = None
    ) -> DisplayCatalogue:
        """Return a fresh shuffled sample capped per bucket and overall."""

        pool = self.require_pool()
        per_bucket = per_bucket or self._settings.display_per_bucket
        total = total or self._settings.display_total

        picked: list[Movie] = []
        seen: set[int] = set()
        for movies in pool.grouped.values():
            for movie in sample(movies, per_bucket, self._rng):
                if movie.tmdb_id in seen:
                    continue
                seen.add(movie.tmdb_id)
                picked.append(movie)
        return DisplayCatalogue.from_movies(shuffled(picked, self._rng)[:total])

    def sample_picks(self, limit: int) -> list[Movie]:
        """Return random pool movies that are not in a fresh display sample."""

        pool = self.require_pool()
        shown = {movie.tmdb_id for movie in self.sample_display().movies}
        remainder = [movie for movie in pool.movies if movie.tmdb_id not in shown]
        return sample(remainder, limit, self._rng)

    def find(self, tmdb_id: int) -> Movie | None:
        pool = self._pool
        if pool is None:
            return None
        return pool.get(tmdb_id)

    def status(self) -> CatalogueStatus:
        pool = self._pool
        return CatalogueStatus(
            ready=self.ready,
            building=self._building,
            total_movies=len(pool) if pool is not None else 0,
            bucket_counts=pool.bucket_counts() if pool is not None else {},
            last_updated=pool.updated_at if pool is not None else None,
            last_error=self._last_error,
            failed_buckets=list(self._failed_buckets),
        )
