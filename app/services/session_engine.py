"""Round and choice state machine for a single game session."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from typing import Callable, Protocol

from ..errors import (
    InvalidChoice,
    NotReady,
    PoolExhausted,
    SessionComplete,
    SessionNotFound,
)
from ..models import Movie, RecommendationsResponse
from .pair_selector import PairFilters, PairSelector
from .pool import CataloguePool
from .session_store import PendingPair, RoundChoice, SessionRecord, SessionStore

logger = logging.getLogger(__name__)

DEFAULT_TOTAL_ROUNDS = 7


class PoolProvider(Protocol):
    def require_pool(self) -> CataloguePool: ...


class SessionEngine:
    """Owns every session mutation.

    None of the mutating methods await, so two requests against the same
    session cannot interleave between validation and commit.
    """

    def __init__(
        self,
        store: SessionStore,
        catalogue: PoolProvider,
        selector: PairSelector,
        *,
        default_total_rounds: int = DEFAULT_TOTAL_ROUNDS,
        sweep_interval_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._catalogue = catalogue
        self._selector = selector
        self._default_total_rounds = default_total_rounds
        self._sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def store(self) -> SessionStore:
        return self._store

    def create_session(
        self, filters: PairFilters | None = None, total_rounds: int | None = None
    ) -> SessionRecord:
        rounds = total_rounds or self._default_total_rounds
        record = SessionRecord.new(
            filters or PairFilters(), rounds, created_at=self._clock()
        )
        self._store.create(record)
        logger.info(
            "Started session %s (%s rounds, filters=%s)",
            record.session_id,
            rounds,
            record.filters.to_payload(),
        )
        return record

    def get_session(self, session_id: str) -> SessionRecord:
        record = self._store.get(session_id)
        if record is None:
            raise SessionNotFound(session_id)
        return record

    def get_or_create_pair(self, session_id: str) -> PendingPair:
        """Return the pending pair for the current round, selecting one if needed."""

        record = self.get_session(session_id)
        if record.is_complete:
            raise SessionComplete()
        pending = record.pending_for_current_round()
        if pending is not None:
            return pending
        pending = self._select(record)
        self._commit_pair(record, pending)
        return pending

    def submit_choice(self, session_id: str, chosen_movie_id: int) -> SessionRecord:
        """Record the pick for the current round and advance or complete."""

        record = self.get_session(session_id)
        if record.is_complete:
            raise SessionComplete()
        pending = record.pending_for_current_round()
        if pending is None or not pending.offers(chosen_movie_id):
            raise InvalidChoice()

        record.choices.append(
            RoundChoice(
                round=record.current_round,
                left_movie=pending.left,
                right_movie=pending.right,
                chosen_movie_id=chosen_movie_id,
            )
        )
        record.pending = None
        if record.current_round >= record.total_rounds:
            record.is_complete = True
            logger.info(
                "Session %s complete after %s choices",
                record.session_id,
                record.choices_made,
            )
        else:
            record.current_round += 1
        self._store.save(record)

        if not record.is_complete:
            self._pregenerate(record)
        return record

    def skip(self, session_id: str) -> PendingPair:
        """Replace the current pair and extend the game by one round.

        The replacement is selected before anything is committed, so a
        failed selection leaves the session as it was.

        Before any pair has been shown there is nothing to skip, so the
        round count stays put and the first pair is returned.
        """

        record = self.get_session(session_id)
        if record.is_complete:
            raise SessionComplete()
        if record.pending_for_current_round() is None:
            return self.get_or_create_pair(session_id)
        pending = self._select(record)
        record.total_rounds += 1
        self._commit_pair(record, pending)
        logger.debug(
            "Session %s skipped round %s; now %s rounds",
            record.session_id,
            record.current_round,
            record.total_rounds,
        )
        return pending

    def progress(self, session_id: str) -> float:
        return self.get_session(session_id).progress

    def get_chosen_movies(self, session_id: str) -> list[Movie]:
        return [choice.chosen for choice in self.get_session(session_id).choices]

    def get_rejected_movies(self, session_id: str) -> list[Movie]:
        return [choice.rejected for choice in self.get_session(session_id).choices]

    def get_choices_with_context(self, session_id: str) -> list[RoundChoice]:
        return list(self.get_session(session_id).choices)

    def store_recommendations(
        self, session_id: str, response: RecommendationsResponse
    ) -> None:
        record = self.get_session(session_id)
        record.recommendations = response
        self._store.save(record)

    def recommendations(self, session_id: str) -> RecommendationsResponse | None:
        return self.get_session(session_id).recommendations

    def sweep_expired(self) -> int:
        expired = self._store.evict_expired()
        if expired:
            logger.info("Evicted %s expired sessions", len(expired))
        return len(expired)

    async def start(self) -> None:
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        task = self._sweep_task
        self._sweep_task = None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval_seconds)
            try:
                self.sweep_expired()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Session sweep failed: %s", exc)

    def _select(self, record: SessionRecord) -> PendingPair:
        pool = self._catalogue.require_pool()
        selected = self._selector.select_pair(
            pool.movies, frozenset(record.shown_ids), record.filters
        )
        if selected is None:
            raise PoolExhausted()
        if selected.stage != "strict":
            logger.debug(
                "Session %s round %s used the %s stage",
                record.session_id,
                record.current_round,
                selected.stage,
            )
        return PendingPair(
            round=record.current_round,
            left=selected.left,
            right=selected.right,
            stage=selected.stage,
        )

    def _commit_pair(self, record: SessionRecord, pending: PendingPair) -> None:
        record.pending = pending
        record.shown_ids.update(pending.ids)
        self._store.save(record)

    def _pregenerate(self, record: SessionRecord) -> None:
        try:
            self._commit_pair(record, self._select(record))
        except (NotReady, PoolExhausted) as exc:
            logger.warning(
                "Could not prepare round %s for session %s: %s",
                record.current_round,
                record.session_id,
                exc,
            )
