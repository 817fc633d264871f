"""Framework-agnostic game API composed from the catalogue and session engine."""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Iterable, Protocol

from ..errors import SessionComplete, SessionNotFound
from ..models import (
    ChoiceResponse,
    Movie,
    Recommendation,
    RecommendationsResponse,
    RoundPairResponse,
    SessionFilters,
    StartSessionResponse,
)
from .assembler import RecommendationRequest, RecommendationRequestAssembler, SubstituteRequest
from .catalogue import CatalogueCache, CatalogueStatus, DisplayCatalogue
from .pair_selector import PairFilters
from .session_engine import SessionEngine
from .session_store import PendingPair, SessionRecord

logger = logging.getLogger(__name__)

MAX_PICKS = 20


class Recommender(Protocol):
    async def generate(self, request: RecommendationRequest) -> RecommendationsResponse: ...

    async def replace(self, request: SubstituteRequest) -> Recommendation: ...


class TrailerSource(Protocol):
    async def get_trailer(self, tmdb_id: int) -> str | None: ...


class GameService:
    """Entry point used by the HTTP layer for every catalogue and session call."""

    def __init__(
        self,
        catalogue: CatalogueCache,
        engine: SessionEngine,
        assembler: RecommendationRequestAssembler,
        recommender: Recommender,
        trailers: TrailerSource,
    ) -> None:
        self._catalogue = catalogue
        self._engine = engine
        self._assembler = assembler
        self._recommender = recommender
        self._trailers = trailers
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def catalogue(self) -> CatalogueCache:
        return self._catalogue

    @property
    def engine(self) -> SessionEngine:
        return self._engine

    # Catalogue browsing -------------------------------------------------

    def display(self) -> DisplayCatalogue:
        return self._catalogue.sample_display()

    def picks(self, limit: int = 6) -> list[Movie]:
        return self._catalogue.sample_picks(max(1, min(limit, MAX_PICKS)))

    async def trailers(self, tmdb_ids: Iterable[int]) -> dict[str, str | None]:
        ids = list(dict.fromkeys(tmdb_ids))
        urls = await asyncio.gather(*(self._trailers.get_trailer(tmdb_id) for tmdb_id in ids))
        return {str(tmdb_id): url for tmdb_id, url in zip(ids, urls)}

    def status(self) -> CatalogueStatus:
        return self._catalogue.status()

    # Sessions -----------------------------------------------------------

    def start(self, filters: SessionFilters | None = None) -> StartSessionResponse:
        record = self._engine.create_session(
            PairFilters.from_request(filters),
            filters.total_rounds if filters is not None else None,
        )
        return StartSessionResponse(
            session_id=record.session_id, total_rounds=record.total_rounds
        )

    def get_round(self, session_id: str) -> RoundPairResponse:
        record = self._engine.get_session(session_id)
        if record.is_complete:
            return _round_response(record, None)
        return _round_response(record, self._engine.get_or_create_pair(session_id))

    def choose_movie(self, session_id: str, chosen_movie_id: int) -> ChoiceResponse:
        try:
            record = self._engine.submit_choice(session_id, chosen_movie_id)
        except SessionComplete:
            # Repeated submissions after the final round are answered, not rejected.
            record = self._engine.get_session(session_id)
        return ChoiceResponse(
            next_round=None if record.is_complete else record.current_round,
            is_complete=record.is_complete,
            progress=record.progress,
        )

    def skip_round(self, session_id: str) -> RoundPairResponse:
        try:
            pending = self._engine.skip(session_id)
        except SessionComplete:
            return _round_response(self._engine.get_session(session_id), None)
        return _round_response(self._engine.get_session(session_id), pending)

    async def get_recommendations(self, session_id: str) -> RecommendationsResponse:
        """Generate recommendations once per session; later calls reuse them."""

        record = self._engine.get_session(session_id)
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            cached = record.recommendations
            if cached is not None:
                return cached
            request = self._assembler.build(record)
            response = await self._recommender.generate(request)
            try:
                self._engine.store_recommendations(session_id, response)
            except SessionNotFound:
                logger.info("Session %s expired while recommending", session_id)
            return response

    async def replace_recommendation(
        self, session_id: str, exclude_ids: Iterable[int] = ()
    ) -> Recommendation:
        record = self._engine.get_session(session_id)
        excluded = set(exclude_ids)
        if record.recommendations is not None:
            excluded.update(
                rec.movie.tmdb_id for rec in record.recommendations.recommendations
            )
        request = self._assembler.build_replacement(record, excluded)
        return await self._recommender.replace(request)


def _round_response(record: SessionRecord, pending: PendingPair | None) -> RoundPairResponse:
    return RoundPairResponse(
        session_id=record.session_id,
        round=record.current_round,
        total_rounds=record.total_rounds,
        base_total_rounds=record.base_total_rounds,
        progress=record.progress,
        left_movie=pending.left if pending is not None else None,
        right_movie=pending.right if pending is not None else None,
        is_complete=record.is_complete,
    )
