"""Session state machine invariants."""

from __future__ import annotations

import random

import pytest

from app.errors import (
    InvalidChoice,
    NotReady,
    PoolExhausted,
    SessionComplete,
    SessionNotFound,
)
from app.models import Movie, RecommendationsResponse
from app.services.pair_selector import PairFilters, PairSelector
from app.services.pool import CataloguePool, build_pool
from app.services.session_engine import SessionEngine
from app.services.session_store import InMemorySessionStore, SessionRecord


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


class StaticCatalogue:
    def __init__(self, pool: CataloguePool | None) -> None:
        self.pool = pool

    def require_pool(self) -> CataloguePool:
        if self.pool is None:
            raise NotReady()
        return self.pool


def _pool(size: int = 40) -> CataloguePool:
    genres = ("Horror", "Comedy", "Drama", "Sci-Fi")
    return build_pool(
        [
            (
                "Test",
                [
                    Movie(
                        id=index,
                        tmdb_id=index,
                        title=f"Movie {index}",
                        genres=[genres[index % len(genres)]],
                    )
                    for index in range(1, size + 1)
                ],
            )
        ]
    )


def _engine(
    pool: CataloguePool | None = None, *, ttl: float = 3_600
) -> tuple[SessionEngine, FakeClock, StaticCatalogue]:
    clock = FakeClock()
    catalogue = StaticCatalogue(pool if pool is not None else _pool())
    engine = SessionEngine(
        InMemorySessionStore(ttl, clock=clock),
        catalogue,
        PairSelector(rng=random.Random(11)),
        clock=clock,
    )
    return engine, clock, catalogue


def _assert_round_invariant(record: SessionRecord) -> None:
    if record.is_complete:
        assert len(record.choices) == record.total_rounds
    else:
        assert len(record.choices) == record.current_round - 1


def _play(engine: SessionEngine, session_id: str) -> SessionRecord:
    while True:
        record = engine.get_session(session_id)
        _assert_round_invariant(record)
        if record.is_complete:
            return record
        pair = engine.get_or_create_pair(session_id)
        engine.submit_choice(session_id, pair.left.id)


def test_full_game_holds_round_invariant() -> None:
    engine, _, _ = _engine()
    record = engine.create_session()

    assert record.current_round == 1
    assert record.total_rounds == 7

    finished = _play(engine, record.session_id)

    assert finished.is_complete is True
    assert len(finished.choices) == 7
    assert finished.progress == 1.0
    assert [choice.round for choice in finished.choices] == list(range(1, 8))


def test_no_movie_is_shown_twice_in_a_session() -> None:
    engine, _, _ = _engine()
    session_id = engine.create_session(total_rounds=10).session_id

    finished = _play(engine, session_id)

    shown = [movie.id for choice in finished.choices for movie in (choice.left_movie, choice.right_movie)]
    assert len(shown) == len(set(shown))


def test_pending_pair_is_cached_for_the_round() -> None:
    engine, _, _ = _engine()
    session_id = engine.create_session().session_id

    first = engine.get_or_create_pair(session_id)
    second = engine.get_or_create_pair(session_id)

    assert first is second
    assert first.round == 1


def test_invalid_choice_leaves_session_untouched() -> None:
    engine, _, _ = _engine()
    session_id = engine.create_session().session_id
    pair = engine.get_or_create_pair(session_id)

    with pytest.raises(InvalidChoice):
        engine.submit_choice(session_id, 99_999)

    record = engine.get_session(session_id)
    assert record.current_round == 1
    assert record.choices == []
    assert record.pending is pair


def test_choice_without_pending_pair_is_invalid() -> None:
    engine, _, _ = _engine()
    session_id = engine.create_session().session_id

    with pytest.raises(InvalidChoice):
        engine.submit_choice(session_id, 1)


def test_repeated_choice_is_recorded_once() -> None:
    engine, _, _ = _engine()
    session_id = engine.create_session().session_id
    pair = engine.get_or_create_pair(session_id)

    engine.submit_choice(session_id, pair.left.id)
    with pytest.raises(InvalidChoice):
        engine.submit_choice(session_id, pair.left.id)

    record = engine.get_session(session_id)
    assert len(record.choices) == 1
    assert record.current_round == 2
    assert pair.left.id not in record.pending.ids


def test_choice_advances_and_pregenerates_next_pair() -> None:
    engine, _, _ = _engine()
    session_id = engine.create_session().session_id
    pair = engine.get_or_create_pair(session_id)

    record = engine.submit_choice(session_id, pair.right.id)

    assert record.current_round == 2
    assert record.pending is not None
    assert record.pending.round == 2
    assert set(record.pending.ids).isdisjoint(pair.ids)
    assert engine.get_or_create_pair(session_id) is record.pending


def test_actions_on_completed_session_raise_session_complete() -> None:
    engine, _, _ = _engine()
    session_id = engine.create_session(total_rounds=1).session_id
    pair = engine.get_or_create_pair(session_id)
    engine.submit_choice(session_id, pair.left.id)

    with pytest.raises(SessionComplete):
        engine.submit_choice(session_id, pair.left.id)
    with pytest.raises(SessionComplete):
        engine.get_or_create_pair(session_id)
    with pytest.raises(SessionComplete):
        engine.skip(session_id)


def test_skip_extends_rounds_and_keeps_progress_monotonic() -> None:
    engine, _, _ = _engine()
    session_id = engine.create_session().session_id
    progress = [engine.progress(session_id)]

    pair = engine.get_or_create_pair(session_id)
    engine.submit_choice(session_id, pair.left.id)
    progress.append(engine.progress(session_id))

    before = engine.get_session(session_id)
    choices_before = list(before.choices)
    old_pending = before.pending
    new_pair = engine.skip(session_id)
    progress.append(engine.progress(session_id))

    record = engine.get_session(session_id)
    assert record.total_rounds == 8
    assert record.base_total_rounds == 7
    assert record.choices == choices_before
    assert record.current_round == 2
    assert old_pending is not None
    assert set(new_pair.ids).isdisjoint(old_pending.ids)
    assert new_pair.round == 2

    for _ in range(3):
        engine.skip(session_id)
        progress.append(engine.progress(session_id))
    finished = _play(engine, session_id)
    progress.append(finished.progress)

    assert progress == sorted(progress)
    assert finished.total_rounds == 11
    assert len(finished.choices) == 11
    assert finished.progress == 1.0


def test_skip_before_first_pair_does_not_extend_game() -> None:
    engine, _, _ = _engine()
    session_id = engine.create_session().session_id

    pair = engine.skip(session_id)

    record = engine.get_session(session_id)
    assert record.total_rounds == 7
    assert record.pending is pair
    assert engine.get_or_create_pair(session_id) is pair


def test_get_pair_raises_pool_exhausted() -> None:
    engine, _, _ = _engine(_pool(3))
    session_id = engine.create_session().session_id
    pair = engine.get_or_create_pair(session_id)

    engine.submit_choice(session_id, pair.left.id)

    with pytest.raises(PoolExhausted):
        engine.get_or_create_pair(session_id)


def test_failed_skip_leaves_session_unchanged() -> None:
    engine, _, _ = _engine(_pool(3))
    session_id = engine.create_session().session_id
    engine.get_or_create_pair(session_id)

    with pytest.raises(PoolExhausted):
        engine.skip(session_id)

    assert engine.get_session(session_id).total_rounds == 7


def test_get_pair_raises_not_ready_without_catalogue() -> None:
    engine, _, catalogue = _engine()
    catalogue.pool = None
    session_id = engine.create_session().session_id

    with pytest.raises(NotReady):
        engine.get_or_create_pair(session_id)


def test_expired_session_is_not_found() -> None:
    engine, clock, _ = _engine(ttl=60)
    session_id = engine.create_session().session_id
    engine.get_or_create_pair(session_id)

    clock.now += 61

    with pytest.raises(SessionNotFound):
        engine.get_or_create_pair(session_id)
    with pytest.raises(SessionNotFound):
        engine.submit_choice(session_id, 1)
    with pytest.raises(SessionNotFound):
        engine.skip(session_id)


def test_sweep_evicts_only_expired_sessions() -> None:
    engine, clock, _ = _engine(ttl=60)
    old = engine.create_session().session_id
    clock.now += 30
    fresh = engine.create_session().session_id
    clock.now += 31

    assert engine.sweep_expired() == 1
    assert len(engine.store) == 1
    with pytest.raises(SessionNotFound):
        engine.get_session(old)
    assert engine.get_session(fresh).session_id == fresh


def test_chosen_and_rejected_movies_follow_round_order() -> None:
    engine, _, _ = _engine()
    session_id = engine.create_session(total_rounds=3).session_id
    expected_chosen: list[int] = []
    expected_rejected: list[int] = []
    for _ in range(3):
        pair = engine.get_or_create_pair(session_id)
        engine.submit_choice(session_id, pair.right.id)
        expected_chosen.append(pair.right.id)
        expected_rejected.append(pair.left.id)

    assert [movie.id for movie in engine.get_chosen_movies(session_id)] == expected_chosen
    assert [movie.id for movie in engine.get_rejected_movies(session_id)] == expected_rejected
    context = engine.get_choices_with_context(session_id)
    assert [choice.chosen_movie_id for choice in context] == expected_chosen


def test_recommendations_are_kept_on_the_session() -> None:
    engine, _, _ = _engine()
    session_id = engine.create_session().session_id
    response = RecommendationsResponse()

    assert engine.recommendations(session_id) is None
    engine.store_recommendations(session_id, response)

    assert engine.recommendations(session_id) is response


def test_filters_are_recorded_on_the_session() -> None:
    engine, _, _ = _engine()
    filters = PairFilters(genres=frozenset({"horror"}))
    session_id = engine.create_session(filters).session_id

    pair = engine.get_or_create_pair(session_id)

    assert engine.get_session(session_id).filters == filters
    assert pair.left.genres == ("Horror",)
    assert pair.right.genres == ("Horror",)
