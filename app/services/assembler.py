"""Turn a finished session into the recommender's input contract."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from ..errors import SessionInProgress
from ..models import Movie
from .session_store import SessionRecord

DEFAULT_LATE_ROUND_WEIGHT = 1.5


@dataclass(frozen=True, slots=True)
class WeightedChoice:
    movie: Movie
    round: int
    weight: float
    beat: Movie


@dataclass(frozen=True, slots=True)
class RejectedChoice:
    movie: Movie
    round: int
    lost_to: Movie


@dataclass(frozen=True, slots=True)
class RecommendationRequest:
    """Ordered, weighted picks plus what each one beat."""

    session_id: str
    chosen: tuple[WeightedChoice, ...]
    rejected: tuple[RejectedChoice, ...]
    exclude_ids: frozenset[int] = frozenset()

    def genre_weights(self) -> Counter[str]:
        """Sum the recency weights of the chosen movies per genre."""

        weights: Counter[str] = Counter()
        for choice in self.chosen:
            for genre in choice.movie.genres:
                weights[genre] += choice.weight
        return weights

    def top_genres(self, limit: int = 3) -> list[str]:
        return [genre for genre, _ in self.genre_weights().most_common(limit)]


@dataclass(frozen=True, slots=True)
class SubstituteRequest:
    """Ask for exactly one recommendation outside ``exclude_ids``."""

    profile: RecommendationRequest
    exclude_ids: frozenset[int] = field(default_factory=frozenset)
    count: int = 1


class RecommendationRequestAssembler:
    def __init__(self, late_round_weight: float = DEFAULT_LATE_ROUND_WEIGHT) -> None:
        self._late_round_weight = late_round_weight

    def weight_for(self, round_number: int, total_rounds: int) -> float:
        """Rounds strictly past the midpoint get the late-round multiplier."""

        if round_number > total_rounds / 2:
            return self._late_round_weight
        return 1.0

    def build(self, session: SessionRecord) -> RecommendationRequest:
        if not session.is_complete:
            raise SessionInProgress()

        chosen: list[WeightedChoice] = []
        rejected: list[RejectedChoice] = []
        for choice in session.choices:
            winner, loser = choice.chosen, choice.rejected
            chosen.append(
                WeightedChoice(
                    movie=winner,
                    round=choice.round,
                    weight=self.weight_for(choice.round, session.total_rounds),
                    beat=loser,
                )
            )
            rejected.append(RejectedChoice(movie=loser, round=choice.round, lost_to=winner))
        return RecommendationRequest(
            session_id=session.session_id,
            chosen=tuple(chosen),
            rejected=tuple(rejected),
            exclude_ids=frozenset(_shown_tmdb_ids(session)),
        )

    def build_replacement(
        self, session: SessionRecord, exclude_ids: Iterable[int] = ()
    ) -> SubstituteRequest:
        profile = self.build(session)
        excluded = set(exclude_ids)
        excluded.update(_shown_tmdb_ids(session))
        return SubstituteRequest(profile=profile, exclude_ids=frozenset(excluded))


def _shown_tmdb_ids(session: SessionRecord) -> set[int]:
    ids: set[int] = set()
    for choice in session.choices:
        ids.add(choice.left_movie.tmdb_id)
        ids.add(choice.right_movie.tmdb_id)
    pending = session.pending
    if pending is not None:
        ids.add(pending.left.tmdb_id)
        ids.add(pending.right.tmdb_id)
    return ids
