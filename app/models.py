"""Pydantic models describing movies and API payloads."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


TMDB_IMAGE_BASE_URL = "https://image.tmdb.org/t/p"


class Movie(BaseModel):
    """A resolved movie. Immutable once it enters the catalogue."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: int
    tmdb_id: int = Field(alias="tmdbId")
    title: str
    year: int | None = None
    poster_path: str | None = Field(default=None, alias="posterPath")
    backdrop_path: str | None = Field(default=None, alias="backdropPath")
    overview: str | None = None
    genres: tuple[str, ...] = ()
    rating: float | None = Field(default=None, ge=0, le=10)
    list_source: str = Field(default="", alias="listSource")
    director: str | None = None
    cast: tuple[str, ...] = ()
    runtime: int | None = None
    keywords: tuple[str, ...] = ()

    @property
    def primary_genre(self) -> str | None:
        return self.genres[0] if self.genres else None

    def poster_url(self, size: str = "w500") -> str | None:
        """Return an absolute poster URL, if the movie has artwork."""

        if not self.poster_path:
            return None
        if self.poster_path.startswith("http"):
            return self.poster_path
        return f"{TMDB_IMAGE_BASE_URL}/{size}{self.poster_path}"

    def with_source(self, list_source: str) -> "Movie":
        """Return a copy tagged with the given provenance bucket."""

        if self.list_source == list_source:
            return self
        return self.model_copy(update={"list_source": list_source})

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class SessionFilters(BaseModel):
    """Filters a player chooses before starting a game."""

    model_config = ConfigDict(populate_by_name=True)

    genres: list[str] = Field(default_factory=list)
    include_top_picks: bool = Field(
        default=False,
        validation_alias=AliasChoices("includeTopPicks", "include_top_picks"),
    )
    include_new_releases: bool = Field(
        default=False,
        validation_alias=AliasChoices("includeNewReleases", "include_new_releases"),
    )
    total_rounds: int | None = Field(
        default=None,
        ge=1,
        le=20,
        validation_alias=AliasChoices("totalRounds", "rounds", "total_rounds"),
    )

    @field_validator("genres", mode="before")
    @classmethod
    def _parse_genres(cls, value: object) -> object:
        if value is None or value == "":
            return []
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple, set)):
            cleaned: list[str] = []
            for entry in value:
                text = str(entry).strip()
                if text and text not in cleaned:
                    cleaned.append(text)
            return cleaned
        return value


class StartSessionResponse(BaseModel):
    session_id: str = Field(serialization_alias="sessionId")
    total_rounds: int = Field(serialization_alias="totalRounds")


class RoundPairResponse(BaseModel):
    session_id: str = Field(serialization_alias="sessionId")
    round: int
    total_rounds: int = Field(serialization_alias="totalRounds")
    base_total_rounds: int = Field(serialization_alias="baseTotalRounds")
    progress: float
    left_movie: Movie | None = Field(default=None, serialization_alias="leftMovie")
    right_movie: Movie | None = Field(default=None, serialization_alias="rightMovie")
    is_complete: bool = Field(serialization_alias="isComplete")


class ChoiceRequest(BaseModel):
    session_id: str = Field(validation_alias=AliasChoices("sessionId", "session_id"))
    chosen_movie_id: int = Field(
        validation_alias=AliasChoices("chosenMovieId", "chosen_movie_id")
    )


class ChoiceResponse(BaseModel):
    success: bool = True
    next_round: int | None = Field(default=None, serialization_alias="nextRound")
    is_complete: bool = Field(serialization_alias="isComplete")
    progress: float


class ReplacementRequest(BaseModel):
    exclude_ids: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("excludeIds", "exclude_ids", "seenIds"),
    )


class Recommendation(BaseModel):
    movie: Movie
    trailer_url: str | None = Field(default=None, serialization_alias="trailerUrl")
    reason: str


class PreferenceProfile(BaseModel):
    top_genres: list[str] = Field(default_factory=list, serialization_alias="topGenres")
    themes: list[str] = Field(default_factory=list)


class RecommendationsResponse(BaseModel):
    recommendations: list[Recommendation] = Field(default_factory=list)
    preference_profile: PreferenceProfile = Field(
        default_factory=PreferenceProfile, serialization_alias="preferenceProfile"
    )

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)
