"""Utilities for resolving metadata from The Movie Database (TMDB)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..buckets import BucketDefinition
from ..config import Settings
from ..models import Movie
from ..utils import parse_year

logger = logging.getLogger(__name__)

GENRE_NAMES: dict[int, str] = {
    28: "Action",
    12: "Adventure",
    16: "Animation",
    35: "Comedy",
    80: "Crime",
    99: "Documentary",
    18: "Drama",
    10751: "Family",
    14: "Fantasy",
    36: "History",
    27: "Horror",
    10402: "Music",
    9648: "Mystery",
    10749: "Romance",
    878: "Sci-Fi",
    10770: "TV Movie",
    53: "Thriller",
    10752: "War",
    37: "Western",
}

TRAILER_TYPES = {"Trailer", "Teaser", "Official", "Clip"}
CAST_LIMIT = 5
KEYWORD_LIMIT = 10


@dataclass(slots=True)
class TMDBSearchResult:
    """Normalized view of a TMDB search result."""

    tmdb_id: int
    title: str
    year: int | None


class TMDBClient:
    """Resolves titles and ids into :class:`Movie` records.

    Every public method swallows upstream failures and returns ``None`` or an
    empty list so catalogue builds can carry on with partial data.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        concurrency: int = 8,
    ):
        self._settings = settings
        self._client = http_client
        self._semaphore = asyncio.Semaphore(concurrency)

    async def resolve_by_title(
        self, title: str, year: int | None = None, *, list_source: str = ""
    ) -> Movie | None:
        """Search TMDB for ``title`` and return the fully resolved movie."""

        normalized_title = (title or "").strip()
        if not normalized_title:
            return None
        result = await self._search(normalized_title, year=year)
        if result is None:
            logger.info("No TMDB match found for %s (%s)", normalized_title, year)
            return None
        return await self.resolve_by_id(result.tmdb_id, list_source=list_source)

    async def resolve_by_id(self, tmdb_id: int, *, list_source: str = "") -> Movie | None:
        """Fetch details, credits and keywords for a TMDB movie id."""

        payload = await self._get(
            f"/movie/{tmdb_id}", {"append_to_response": "credits,keywords"}
        )
        if not isinstance(payload, dict) or "id" not in payload:
            return None
        try:
            return self._movie_from_details(payload, list_source=list_source)
        except (TypeError, ValueError) as exc:
            logger.warning("Discarding malformed TMDB payload for %s: %s", tmdb_id, exc)
            return None

    async def discover_by_bucket(
        self, bucket: BucketDefinition, *, fallback: bool = False, limit: int = 50
    ) -> list[Movie]:
        """Return movies from a TMDB discovery feed for the bucket.

        ``fallback`` switches to the bucket's secondary query shape, used when
        the curated list sources are unavailable.
        """

        if fallback:
            if not bucket.fallback_params:
                return []
            endpoint = "/discover/movie"
            base_params = dict(bucket.fallback_params)
        elif bucket.discovery == "now-playing":
            endpoint = "/movie/now_playing"
            base_params = dict(bucket.discovery_params)
        elif bucket.discovery == "discover":
            endpoint = "/discover/movie"
            base_params = dict(bucket.discovery_params)
        else:
            return []

        movies: list[Movie] = []
        seen: set[int] = set()
        page = 1
        while len(movies) < limit and page <= 5:
            params = {
                "include_adult": "false",
                "language": "en-US",
                "page": str(page),
                **base_params,
            }
            payload = await self._get(endpoint, params)
            if not isinstance(payload, dict):
                break
            results = payload.get("results") or []
            if not isinstance(results, list) or not results:
                break
            for entry in results:
                if not isinstance(entry, dict):
                    continue
                movie = self._movie_from_summary(entry, list_source=bucket.name)
                if movie is None or movie.tmdb_id in seen:
                    continue
                seen.add(movie.tmdb_id)
                movies.append(movie)
                if len(movies) >= limit:
                    break
            total_pages = payload.get("total_pages")
            if isinstance(total_pages, int) and page >= total_pages:
                break
            page += 1
        return movies

    async def get_trailer(self, tmdb_id: int) -> str | None:
        """Return a YouTube embed URL for the movie's trailer, if any."""

        payload = await self._get(f"/movie/{tmdb_id}/videos")
        if not isinstance(payload, dict):
            return None
        videos = [
            video
            for video in payload.get("results") or []
            if isinstance(video, dict) and video.get("site") == "YouTube" and video.get("key")
        ]
        for video in videos:
            if video.get("type") in TRAILER_TYPES:
                return f"https://www.youtube.com/embed/{video['key']}"
        if videos:
            return f"https://www.youtube.com/embed/{videos[0]['key']}"
        return None

    async def _search(self, title: str, *, year: int | None) -> TMDBSearchResult | None:
        """Return the best search match for the supplied title."""

        params: dict[str, str] = {
            "query": title,
            "include_adult": "false",
            "language": "en-US",
            "page": "1",
        }
        if year:
            params["year"] = str(year)
        payload = await self._get("/search/movie", params)
        if not isinstance(payload, dict):
            return None
        results = [
            entry
            for entry in payload.get("results") or []
            if isinstance(entry, dict) and entry.get("id") is not None
        ]
        if not results:
            return None

        best_match = results[0]
        if year is not None:
            for candidate in results:
                if parse_year(candidate.get("release_date")) == year:
                    best_match = candidate
                    break

        return TMDBSearchResult(
            tmdb_id=int(best_match["id"]),
            title=best_match.get("title") or title,
            year=parse_year(best_match.get("release_date")),
        )

    async def _get(
        self, endpoint: str, params: dict[str, str] | None = None
    ) -> Any | None:
        if not self._settings.tmdb_api_key:
            logger.warning("TMDB_API_KEY is not set; skipping %s", endpoint)
            return None
        query = {"api_key": self._settings.tmdb_api_key, **(params or {})}
        try:
            async with self._semaphore:
                response = await self._client.get(endpoint, params=query)
        except httpx.HTTPError as exc:
            logger.warning("TMDB request %s failed: %s", endpoint, exc)
            return None
        if response.status_code >= 400:
            logger.warning(
                "TMDB request %s returned %s: %s",
                endpoint,
                response.status_code,
                response.text[:200],
            )
            return None
        try:
            return response.json()
        except ValueError:
            logger.warning("TMDB returned non-JSON payload for %s", endpoint)
            return None

    @staticmethod
    def _movie_from_details(payload: dict[str, Any], *, list_source: str) -> Movie:
        credits = payload.get("credits") or {}
        crew = credits.get("crew") or []
        director = next(
            (
                member.get("name")
                for member in crew
                if isinstance(member, dict) and member.get("job") == "Director"
            ),
            None,
        )
        cast_entries = [
            member for member in credits.get("cast") or [] if isinstance(member, dict)
        ]
        cast_entries.sort(key=lambda member: member.get("order", 1_000))
        keywords = (payload.get("keywords") or {}).get("keywords") or []

        tmdb_id = int(payload["id"])
        return Movie(
            id=tmdb_id,
            tmdb_id=tmdb_id,
            title=str(payload.get("title") or payload.get("original_title") or ""),
            year=parse_year(payload.get("release_date")),
            poster_path=payload.get("poster_path"),
            backdrop_path=payload.get("backdrop_path"),
            overview=payload.get("overview") or None,
            genres=tuple(
                GENRE_NAMES.get(genre.get("id"), str(genre["name"]))
                for genre in payload.get("genres") or []
                if isinstance(genre, dict) and genre.get("name")
            ),
            rating=payload.get("vote_average") or None,
            list_source=list_source,
            director=director,
            cast=tuple(
                str(member["name"])
                for member in cast_entries[:CAST_LIMIT]
                if member.get("name")
            ),
            runtime=payload.get("runtime") or None,
            keywords=tuple(
                str(keyword["name"])
                for keyword in keywords[:KEYWORD_LIMIT]
                if isinstance(keyword, dict) and keyword.get("name")
            ),
        )

    @staticmethod
    def _movie_from_summary(entry: dict[str, Any], *, list_source: str) -> Movie | None:
        try:
            tmdb_id = int(entry["id"])
        except (KeyError, TypeError, ValueError):
            return None
        title = entry.get("title") or entry.get("original_title")
        if not title:
            return None
        try:
            return Movie(
                id=tmdb_id,
                tmdb_id=tmdb_id,
                title=str(title),
                year=parse_year(entry.get("release_date")),
                poster_path=entry.get("poster_path"),
                backdrop_path=entry.get("backdrop_path"),
                overview=entry.get("overview") or None,
                genres=tuple(
                    GENRE_NAMES[genre_id]
                    for genre_id in entry.get("genre_ids") or []
                    if genre_id in GENRE_NAMES
                ),
                rating=entry.get("vote_average") or None,
                list_source=list_source,
            )
        except ValueError:
            return None
