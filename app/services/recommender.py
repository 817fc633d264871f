"""LLM-backed recommendations with a catalogue fallback.

Talks to any OpenAI-compatible ``/chat/completions`` endpoint. When the model
is unavailable, misbehaves or returns too few usable titles, the remaining
slots are filled from the catalogue pool so a finished game always gets
recommendations.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Iterable, Protocol

import httpx

from ..config import Settings
from ..errors import GameError, NoMoreCandidates
from ..models import Movie, PreferenceProfile, Recommendation, RecommendationsResponse
from ..utils import extract_json_object, parse_year, shuffled
from .assembler import RecommendationRequest, SubstituteRequest
from .pool import CataloguePool

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are ReelDuel, a film buff who recommends movies after watching someone "
    "play a this-or-that game. You always respond with a single JSON object that "
    "matches the documented schema and never include commentary outside JSON."
)

RESPONSE_SCHEMA = (
    '{"recommendations":[{"title":"","year":2024,"reason":""}],'
    '"profile":{"topGenres":[""],"themes":[""]}}'
)

# Ask for a few extra titles; some will not resolve or will already be shown.
OVERSAMPLE = 3


class MovieResolver(Protocol):
    async def resolve_by_title(
        self, title: str, year: int | None = None, *, list_source: str = ""
    ) -> Movie | None: ...

    async def get_trailer(self, tmdb_id: int) -> str | None: ...


class PoolProvider(Protocol):
    def require_pool(self) -> CataloguePool: ...


class RecommenderUnavailable(RuntimeError):
    """The model could not be reached or answered with something unusable."""


class OpenAIRecommender:
    """Client responsible for turning a choice profile into recommendations."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        resolver: MovieResolver,
        catalogue: PoolProvider,
        *,
        rng: random.Random | None = None,
    ):
        self._settings = settings
        self._client = http_client
        self._resolver = resolver
        self._catalogue = catalogue
        self._rng = rng or random.Random()

    @property
    def enabled(self) -> bool:
        return bool(self._settings.openai_api_key)

    async def generate(self, request: RecommendationRequest) -> RecommendationsResponse:
        count = self._settings.recommendation_count
        excluded = set(request.exclude_ids)
        recommendations: list[Recommendation] = []
        profile = PreferenceProfile(top_genres=request.top_genres())

        if self.enabled:
            try:
                parsed = await self._complete(
                    self._profile_prompt(request, count=count + OVERSAMPLE)
                )
            except RecommenderUnavailable as exc:
                logger.warning("Recommender unavailable, using catalogue picks: %s", exc)
            else:
                recommendations = await self._resolve_entries(
                    _entries(parsed), excluded, limit=count
                )
                profile = _profile_from(parsed, default=profile)
        else:
            logger.info("OPENAI_API_KEY is not set; recommending from the catalogue")

        if len(recommendations) < count:
            excluded.update(rec.movie.tmdb_id for rec in recommendations)
            recommendations.extend(
                await self._fallback(request, excluded, limit=count - len(recommendations))
            )
        return RecommendationsResponse(
            recommendations=recommendations, preference_profile=profile
        )

    async def replace(self, request: SubstituteRequest) -> Recommendation:
        """Return one recommendation outside the request's exclusion set."""

        excluded = set(request.exclude_ids)
        if self.enabled:
            try:
                parsed = await self._complete(
                    self._profile_prompt(
                        request.profile,
                        count=request.count + OVERSAMPLE,
                        avoid=excluded,
                    )
                )
            except RecommenderUnavailable as exc:
                logger.warning("Replacement request failed, using catalogue: %s", exc)
            else:
                resolved = await self._resolve_entries(
                    _entries(parsed), excluded, limit=request.count
                )
                if resolved:
                    return resolved[0]

        fallback = await self._fallback(request.profile, excluded, limit=request.count)
        if not fallback:
            raise NoMoreCandidates()
        return fallback[0]

    def _profile_prompt(
        self,
        request: RecommendationRequest,
        *,
        count: int,
        avoid: Iterable[int] = (),
    ) -> str:
        lines = [
            f"Recommend EXACTLY {count} movies for this player.",
            "They picked one movie from each pair. Later rounds carry more weight.",
        ]
        for choice in request.chosen:
            lines.append(
                f"Round {choice.round} (weight {choice.weight:g}): chose "
                f"{_describe(choice.movie)} over {_describe(choice.beat)}"
            )
        top_genres = request.top_genres()
        if top_genres:
            lines.append("Strongest genres so far: " + ", ".join(top_genres))
        shown = {choice.movie.title for choice in request.chosen}
        shown.update(choice.movie.title for choice in request.rejected)
        if shown:
            lines.append("Do not recommend: " + "; ".join(sorted(shown)))
        avoid_count = len(set(avoid))
        if avoid_count:
            lines.append(f"They have already seen {avoid_count} other suggestions; pick fresh ones.")
        lines.append("Respond strictly with JSON: " + RESPONSE_SCHEMA)
        return "\n".join(lines)

    async def _complete(self, prompt: str) -> dict[str, Any]:
        payload = {
            "model": self._settings.openai_model,
            "temperature": 0.8,
            "max_tokens": 1200,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        headers = {
            "Authorization": f"Bearer {self._settings.openai_api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = await self._client.post(
                "/chat/completions", json=payload, headers=headers
            )
        except httpx.HTTPError as exc:
            raise RecommenderUnavailable(str(exc) or exc.__class__.__name__) from exc
        if response.status_code >= 400:
            raise RecommenderUnavailable(
                f"HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise RecommenderUnavailable("Non-JSON response from model") from exc
        if not isinstance(data, dict):
            raise RecommenderUnavailable("Unexpected response shape from model")
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            raise RecommenderUnavailable("Model returned no choices")
        content = (choices[0].get("message") or {}).get("content")
        if not isinstance(content, str):
            raise RecommenderUnavailable("Model returned no content")
        try:
            return extract_json_object(content)
        except ValueError as exc:
            raise RecommenderUnavailable(str(exc)) from exc

    async def _resolve_entries(
        self,
        entries: list[dict[str, Any]],
        excluded: set[int],
        *,
        limit: int,
    ) -> list[Recommendation]:
        resolved = await asyncio.gather(
            *(
                self._resolver.resolve_by_title(
                    str(entry.get("title") or ""), parse_year(entry.get("year"))
                )
                for entry in entries
            ),
            return_exceptions=True,
        )
        recommendations: list[Recommendation] = []
        seen = set(excluded)
        for entry, movie in zip(entries, resolved):
            if not isinstance(movie, Movie):
                if isinstance(movie, BaseException):
                    logger.debug("Could not resolve %s: %s", entry.get("title"), movie)
                continue
            if movie.tmdb_id in seen:
                continue
            seen.add(movie.tmdb_id)
            reason = str(entry.get("reason") or "").strip() or _fallback_reason(movie, [])
            recommendations.append(await self._with_trailer(movie, reason))
            if len(recommendations) >= limit:
                break
        return recommendations

    async def _fallback(
        self,
        request: RecommendationRequest,
        excluded: set[int],
        *,
        limit: int,
    ) -> list[Recommendation]:
        if limit <= 0:
            return []
        try:
            pool = self._catalogue.require_pool()
        except GameError as exc:
            logger.warning("Catalogue fallback unavailable: %s", exc)
            return []

        top_genres = request.top_genres()
        wanted = set(top_genres)
        remaining = shuffled(
            [movie for movie in pool.movies if movie.tmdb_id not in excluded], self._rng
        )
        # Genre matches first, everything else after.
        remaining.sort(key=lambda movie: not wanted.intersection(movie.genres))

        picks: list[Recommendation] = []
        for movie in remaining[:limit]:
            picks.append(
                await self._with_trailer(movie, _fallback_reason(movie, top_genres))
            )
        return picks

    async def _with_trailer(self, movie: Movie, reason: str) -> Recommendation:
        trailer_url = None
        try:
            trailer_url = await self._resolver.get_trailer(movie.tmdb_id)
        except Exception as exc:
            logger.debug("Trailer lookup failed for %s: %s", movie.tmdb_id, exc)
        return Recommendation(movie=movie, trailer_url=trailer_url, reason=reason)


def _entries(parsed: dict[str, Any]) -> list[dict[str, Any]]:
    candidate = parsed.get("recommendations") or parsed.get("items")
    if not isinstance(candidate, list):
        return []
    return [
        entry
        for entry in candidate
        if isinstance(entry, dict) and str(entry.get("title") or "").strip()
    ]


def _profile_from(parsed: dict[str, Any], *, default: PreferenceProfile) -> PreferenceProfile:
    raw = parsed.get("profile") or parsed.get("preferenceProfile")
    if not isinstance(raw, dict):
        return default
    top_genres = _strings(raw.get("topGenres") or raw.get("top_genres"))
    themes = _strings(raw.get("themes"))
    return PreferenceProfile(
        top_genres=top_genres or default.top_genres,
        themes=themes or default.themes,
    )


def _strings(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(entry).strip() for entry in value if str(entry).strip()]


def _describe(movie: Movie) -> str:
    label = f"{movie.title} ({movie.year})" if movie.year else movie.title
    if movie.genres:
        label += " [" + ", ".join(movie.genres[:3]) + "]"
    return label


def _fallback_reason(movie: Movie, top_genres: list[str]) -> str:
    shared = [genre for genre in movie.genres if genre in top_genres]
    if shared:
        return f"Matches your taste for {' and '.join(shared[:2])}."
    if movie.list_source:
        return f"A pick from our {movie.list_source} shelf to round things out."
    return "A crowd favourite worth a look."
