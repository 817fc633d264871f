import pytest

from app.models import (
    ChoiceRequest,
    Movie,
    PreferenceProfile,
    Recommendation,
    RecommendationsResponse,
    ReplacementRequest,
    SessionFilters,
)


def test_movie_accepts_camel_case_and_serialises_aliases():
    movie = Movie.model_validate(
        {
            "id": 603,
            "tmdbId": 603,
            "title": "The Matrix",
            "year": 1999,
            "posterPath": "/matrix.jpg",
            "genres": ["Action", "Sci-Fi"],
            "listSource": "Sci-Fi",
        }
    )

    payload = movie.to_payload()
    assert payload["tmdbId"] == 603
    assert payload["listSource"] == "Sci-Fi"
    assert payload["posterPath"] == "/matrix.jpg"
    assert movie.primary_genre == "Action"
    assert movie.poster_url() == "https://image.tmdb.org/t/p/w500/matrix.jpg"


def test_movie_with_source_returns_tagged_copy():
    movie = Movie(id=1, tmdb_id=1, title="Alien", list_source="Horror")

    tagged = movie.with_source("Sci-Fi")

    assert tagged.list_source == "Sci-Fi"
    assert movie.list_source == "Horror"
    assert movie.with_source("Horror") is movie


def test_session_filters_parse_comma_separated_genres():
    filters = SessionFilters.model_validate(
        {"genres": "Horror, Comedy,Horror", "includeTopPicks": True, "totalRounds": 5}
    )

    assert filters.genres == ["Horror", "Comedy"]
    assert filters.include_top_picks is True
    assert filters.include_new_releases is False
    assert filters.total_rounds == 5


def test_session_filters_default_to_empty():
    filters = SessionFilters.model_validate({})

    assert filters.genres == []
    assert filters.total_rounds is None


def test_request_models_accept_both_casings():
    assert ChoiceRequest.model_validate(
        {"sessionId": "abc", "chosenMovieId": "12"}
    ).chosen_movie_id == 12
    assert ChoiceRequest.model_validate(
        {"session_id": "abc", "chosen_movie_id": 3}
    ).session_id == "abc"
    assert ReplacementRequest.model_validate({"seenIds": [1, 2]}).exclude_ids == [1, 2]


def test_recommendations_payload_uses_camel_case():
    response = RecommendationsResponse(
        recommendations=[
            Recommendation(
                movie=Movie(id=1, tmdb_id=1, title="Heat"),
                trailer_url="https://www.youtube.com/embed/x",
                reason="Slick crime",
            )
        ],
        preference_profile=PreferenceProfile(top_genres=["Crime"], themes=["heists"]),
    )

    payload = response.to_payload()
    assert payload["preferenceProfile"] == {"topGenres": ["Crime"], "themes": ["heists"]}
    assert payload["recommendations"][0]["trailerUrl"] == "https://www.youtube.com/embed/x"
    assert payload["recommendations"][0]["movie"]["tmdbId"] == 1


def test_movie_is_hashable_and_deeply_immutable():
    movie = Movie(id=1, tmdb_id=1, title="Alien", genres=["Horror", "Sci-Fi"])

    assert movie.genres == ("Horror", "Sci-Fi")
    assert hash(movie) == hash(Movie(id=1, tmdb_id=1, title="Alien", genres=["Horror", "Sci-Fi"]))
    assert movie.to_payload()["genres"] == ["Horror", "Sci-Fi"]
    with pytest.raises(AttributeError):
        movie.genres.append("Comedy")  # type: ignore[attr-defined]
