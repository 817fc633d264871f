"""Filter-aware pair selection with an ordered relaxation cascade."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import AbstractSet, Callable, Iterable, Sequence

from ..buckets import new_release_names, top_pick_names
from ..models import Movie, SessionFilters
from ..utils import shuffled

logger = logging.getLogger(__name__)

STRICT_GENRE_DEPTH = 2


@dataclass(frozen=True, slots=True)
class PairFilters:
    """Normalised filter intent for a session.

    Genre tags are case-folded. A tag that names a bucket (for example
    ``"Indie"``) also matches movies whose ``list_source`` is that bucket;
    bucket matches are OR'd with genre matches, never AND'd.
    """

    genres: frozenset[str] = frozenset()
    include_top_picks: bool = False
    include_new_releases: bool = False

    @classmethod
    def from_request(cls, filters: SessionFilters | None) -> "PairFilters":
        if filters is None:
            return cls()
        return cls(
            genres=frozenset(genre.casefold() for genre in filters.genres if genre),
            include_top_picks=filters.include_top_picks,
            include_new_releases=filters.include_new_releases,
        )

    @property
    def is_empty(self) -> bool:
        return not (self.genres or self.include_top_picks or self.include_new_releases)

    def to_payload(self) -> dict[str, object]:
        return {
            "genres": sorted(self.genres),
            "includeTopPicks": self.include_top_picks,
            "includeNewReleases": self.include_new_releases,
        }


@dataclass(frozen=True, slots=True)
class SelectionContext:
    """Filters plus the provenance buckets the special flags refer to."""

    filters: PairFilters
    top_pick_sources: frozenset[str]
    new_release_sources: frozenset[str]

    def matches_provenance(self, movie: Movie) -> bool:
        source = movie.list_source
        if source.casefold() in self.filters.genres:
            return True
        if self.filters.include_top_picks and source in self.top_pick_sources:
            return True
        if self.filters.include_new_releases and source in self.new_release_sources:
            return True
        return False


Predicate = Callable[[Movie, SelectionContext], bool]


def _genre_match(movie: Movie, context: SelectionContext, depth: int | None) -> bool:
    genres = movie.genres if depth is None else movie.genres[:depth]
    return any(genre.casefold() in context.filters.genres for genre in genres)


def strict_match(movie: Movie, context: SelectionContext) -> bool:
    """Primary genres, bucket name or flag provenance."""

    if context.filters.is_empty:
        return True
    return _genre_match(movie, context, STRICT_GENRE_DEPTH) or context.matches_provenance(
        movie
    )


def relaxed_match(movie: Movie, context: SelectionContext) -> bool:
    """Like :func:`strict_match` but any genre on the movie counts."""

    if context.filters.is_empty:
        return True
    return _genre_match(movie, context, None) or context.matches_provenance(movie)


def any_match(movie: Movie, context: SelectionContext) -> bool:
    return True


@dataclass(frozen=True, slots=True)
class SelectionStage:
    name: str
    predicate: Predicate

    def candidates(
        self,
        movies: Iterable[Movie],
        exclude_ids: AbstractSet[int],
        context: SelectionContext,
    ) -> list[Movie]:
        return [
            movie
            for movie in movies
            if movie.id not in exclude_ids and self.predicate(movie, context)
        ]


DEFAULT_STAGES: tuple[SelectionStage, ...] = (
    SelectionStage("strict", strict_match),
    SelectionStage("relaxed", relaxed_match),
    SelectionStage("fallback", any_match),
)


@dataclass(frozen=True, slots=True)
class SelectedPair:
    left: Movie
    right: Movie
    stage: str

    @property
    def ids(self) -> tuple[int, int]:
        return (self.left.id, self.right.id)


class PairSelector:
    """Picks two distinct movies, relaxing filters stage by stage."""

    def __init__(
        self,
        *,
        stages: Sequence[SelectionStage] = DEFAULT_STAGES,
        top_pick_sources: AbstractSet[str] | None = None,
        new_release_sources: AbstractSet[str] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._stages = tuple(stages)
        self._top_pick_sources = frozenset(
            top_pick_sources if top_pick_sources is not None else top_pick_names()
        )
        self._new_release_sources = frozenset(
            new_release_sources if new_release_sources is not None else new_release_names()
        )
        self._rng = rng or random.Random()

    @property
    def stages(self) -> tuple[SelectionStage, ...]:
        return self._stages

    def context_for(self, filters: PairFilters) -> SelectionContext:
        return SelectionContext(
            filters=filters,
            top_pick_sources=self._top_pick_sources,
            new_release_sources=self._new_release_sources,
        )

    def select_pair(
        self,
        movies: Sequence[Movie],
        exclude_ids: AbstractSet[int] = frozenset(),
        filters: PairFilters | None = None,
    ) -> SelectedPair | None:
        """Return a random pair from the first stage with two candidates."""

        context = self.context_for(filters or PairFilters())
        for stage in self._stages:
            candidates = _distinct(stage.candidates(movies, exclude_ids, context))
            if len(candidates) < 2:
                logger.debug(
                    "Stage %s yielded %s candidates; relaxing", stage.name, len(candidates)
                )
                continue
            left, right = shuffled(candidates, self._rng)[:2]
            return SelectedPair(left=left, right=right, stage=stage.name)
        return None


def _distinct(movies: list[Movie]) -> list[Movie]:
    seen: set[int] = set()
    unique: list[Movie] = []
    for movie in movies:
        if movie.id in seen:
            continue
        seen.add(movie.id)
        unique.append(movie)
    return unique
