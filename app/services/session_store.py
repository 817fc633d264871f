"""Session records and the store that holds them."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Protocol

from ..models import Movie, RecommendationsResponse
from .pair_selector import PairFilters


@dataclass(frozen=True, slots=True)
class RoundChoice:
    """One completed round: the pair that was offered and the pick."""

    round: int
    left_movie: Movie
    right_movie: Movie
    chosen_movie_id: int

    @property
    def chosen(self) -> Movie:
        if self.chosen_movie_id == self.left_movie.id:
            return self.left_movie
        return self.right_movie

    @property
    def rejected(self) -> Movie:
        if self.chosen_movie_id == self.left_movie.id:
            return self.right_movie
        return self.left_movie


@dataclass(frozen=True, slots=True)
class PendingPair:
    """The two movies offered for ``round`` of a session."""

    round: int
    left: Movie
    right: Movie
    stage: str = "strict"

    @property
    def ids(self) -> tuple[int, int]:
        return (self.left.id, self.right.id)

    def offers(self, movie_id: int) -> bool:
        return movie_id in self.ids


@dataclass(slots=True)
class SessionRecord:
    session_id: str
    filters: PairFilters
    total_rounds: int
    base_total_rounds: int
    created_at: float
    current_round: int = 1
    choices: list[RoundChoice] = field(default_factory=list)
    is_complete: bool = False
    pending: PendingPair | None = None
    shown_ids: set[int] = field(default_factory=set)
    recommendations: RecommendationsResponse | None = None

    @classmethod
    def new(
        cls, filters: PairFilters, total_rounds: int, *, created_at: float
    ) -> "SessionRecord":
        return cls(
            session_id=str(uuid.uuid4()),
            filters=filters,
            total_rounds=total_rounds,
            base_total_rounds=total_rounds,
            created_at=created_at,
        )

    @property
    def choices_made(self) -> int:
        return len(self.choices)

    @property
    def progress(self) -> float:
        if self.base_total_rounds <= 0:
            return 1.0
        return min(1.0, self.choices_made / self.base_total_rounds)

    def pending_for_current_round(self) -> PendingPair | None:
        pending = self.pending
        if pending is None or pending.round != self.current_round:
            return None
        return pending


class SessionStore(Protocol):
    """Storage for session records; swappable for an external store."""

    def create(self, record: SessionRecord) -> None: ...

    def get(self, session_id: str) -> SessionRecord | None: ...

    def save(self, record: SessionRecord) -> None: ...

    def delete(self, session_id: str) -> None: ...

    def evict_expired(self) -> list[str]: ...

    def __len__(self) -> int: ...


class InMemorySessionStore:
    """Process-local session map with creation-time TTL."""

    def __init__(
        self,
        ttl_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, SessionRecord] = {}

    def create(self, record: SessionRecord) -> None:
        self._sessions[record.session_id] = record

    def get(self, session_id: str) -> SessionRecord | None:
        record = self._sessions.get(session_id)
        if record is None:
            return None
        if self._expired(record, self._clock()):
            self._sessions.pop(session_id, None)
            return None
        return record

    def save(self, record: SessionRecord) -> None:
        self._sessions[record.session_id] = record

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def evict_expired(self) -> list[str]:
        now = self._clock()
        expired = [
            session_id
            for session_id, record in self._sessions.items()
            if self._expired(record, now)
        ]
        for session_id in expired:
            self._sessions.pop(session_id, None)
        return expired

    def _expired(self, record: SessionRecord, now: float) -> bool:
        return now - record.created_at > self._ttl_seconds

    def __len__(self) -> int:
        return len(self._sessions)
