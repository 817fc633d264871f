"""Named catalogue buckets that feed the movie pool."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Mapping


SourceKind = Literal["imdb", "editorial"]
DiscoveryEndpoint = Literal["discover", "now-playing"]


@dataclass(frozen=True)
class ListSource:
    """A page of curated titles scraped for a bucket."""

    kind: SourceKind
    ref: str
    pattern: str | None = None


@dataclass(frozen=True)
class BucketDefinition:
    """Describes a provenance bucket and how its candidates are gathered."""

    key: str
    name: str
    description: str
    sources: tuple[ListSource, ...] = ()
    discovery: DiscoveryEndpoint | None = None
    discovery_params: Mapping[str, str] = field(default_factory=dict)
    fallback_params: Mapping[str, str] = field(default_factory=dict)
    top_pick: bool = False
    new_release: bool = False

    @property
    def uses_discovery(self) -> bool:
        return self.discovery is not None


_RT_PERCENT = r"##\s+([^(]+)\s+\((\d{4})\)\s+\d+%"
_RT_LOOSE = r"##\s+([^(]+)\s+\((\d{4})\)\s+[\d%]+"
_ROLLING_STONE = r"##\s+'([^']+)'\s+\((\d{4})\)"
_EMPIRE = r"###\s+\d+\)\s+([^(]+?)\s+\((\d{4})\)"
_VARIETY = r"##\s+([^(]+)\s+\((\d{4})\)"
_INDIEWIRE = r"##\s+\"([^\"]+)\"\s+\([^)]*(\d{4})\)"


BUCKETS: tuple[BucketDefinition, ...] = (
    BucketDefinition(
        key="top-250",
        name="Top 250 Movies",
        description="The highest rated films of all time.",
        sources=(ListSource("imdb", "ls094921320"),),
        fallback_params={"sort_by": "vote_average.desc", "vote_count.gte": "5000"},
        top_pick=True,
    ),
    BucketDefinition(
        key="critically-acclaimed",
        name="Critically Acclaimed",
        description="Films critics keep returning to.",
        sources=(ListSource("imdb", "ls005747458"),),
        fallback_params={"sort_by": "vote_average.desc", "vote_count.gte": "2000"},
        top_pick=True,
    ),
    BucketDefinition(
        key="classics",
        name="Classic Movies",
        description="Enduring titles from the studio era onwards.",
        sources=(ListSource("imdb", "ls002065120"),),
        fallback_params={
            "sort_by": "vote_count.desc",
            "primary_release_date.lte": "1980-12-31",
        },
    ),
    BucketDefinition(
        key="horror",
        name="Horror",
        description="Scares, slashers and slow-burn dread.",
        sources=(
            ListSource("imdb", "ls003501243"),
            ListSource(
                "editorial",
                "https://editorial.rottentomatoes.com/guide/best-horror-movies-of-all-time/",
                _RT_PERCENT,
            ),
            ListSource(
                "editorial",
                "https://www.rollingstone.com/tv-movies/tv-movie-lists/greatest-horror-movies-of-the-21st-century-103994/",
                _ROLLING_STONE,
            ),
            ListSource(
                "editorial",
                "https://www.empireonline.com/movies/features/best-horror-movies/",
                _EMPIRE,
            ),
        ),
        fallback_params={"with_genres": "27", "sort_by": "vote_count.desc"},
    ),
    BucketDefinition(
        key="comedy",
        name="Comedy",
        description="Comedies that still land.",
        sources=(
            ListSource("imdb", "ls000873904"),
            ListSource(
                "editorial",
                "https://editorial.rottentomatoes.com/guide/essential-comedy-movies/",
                _RT_LOOSE,
            ),
            ListSource(
                "editorial",
                "https://www.rollingstone.com/tv-movies/tv-movie-lists/greatest-comedies-of-the-21st-century-630244/",
                _ROLLING_STONE,
            ),
        ),
        fallback_params={"with_genres": "35", "sort_by": "vote_count.desc"},
    ),
    BucketDefinition(
        key="sci-fi",
        name="Sci-Fi",
        description="Spaceships, time loops and near futures.",
        sources=(
            ListSource(
                "editorial",
                "https://editorial.rottentomatoes.com/guide/essential-sci-fi-movies-of-all-time/",
                _RT_PERCENT,
            ),
            ListSource(
                "editorial",
                "https://www.rollingstone.com/tv-movies/tv-movie-lists/best-sci-fi-movies-1234893930/",
                _ROLLING_STONE,
            ),
            ListSource(
                "editorial",
                "https://www.empireonline.com/movies/features/best-sci-fi-movies/",
                _EMPIRE,
            ),
        ),
        fallback_params={"with_genres": "878", "sort_by": "vote_count.desc"},
    ),
    BucketDefinition(
        key="fantasy",
        name="Fantasy",
        description="Quests, myths and other worlds.",
        sources=(
            ListSource(
                "editorial",
                "https://editorial.rottentomatoes.com/guide/best-fantasy-movies-of-all-time/",
                _RT_PERCENT,
            ),
            ListSource(
                "editorial",
                "https://www.indiewire.com/lists/best-fantasy-movies-all-time/",
                _INDIEWIRE,
            ),
        ),
        fallback_params={"with_genres": "14", "sort_by": "vote_count.desc"},
    ),
    BucketDefinition(
        key="romance",
        name="Romance",
        description="Love stories, swoons and rom-coms.",
        sources=(
            ListSource(
                "editorial",
                "https://editorial.rottentomatoes.com/guide/best-romantic-comedies-of-all-time/",
                _RT_LOOSE,
            ),
            ListSource(
                "editorial",
                "https://www.empireonline.com/movies/features/best-romantic-movies/",
                _EMPIRE,
            ),
            ListSource(
                "editorial", "https://variety.com/lists/best-romantic-movies/", _VARIETY
            ),
            ListSource(
                "editorial",
                "https://www.indiewire.com/feature/best-romance-movies-ranked-1201849113/",
                _INDIEWIRE,
            ),
        ),
        fallback_params={"with_genres": "10749", "sort_by": "vote_count.desc"},
    ),
    BucketDefinition(
        key="indie",
        name="Indie",
        description="Independent films with daring storytelling.",
        discovery="discover",
        discovery_params={"with_keywords": "10183", "sort_by": "vote_count.desc"},
        fallback_params={"with_keywords": "10183", "sort_by": "popularity.desc"},
    ),
    BucketDefinition(
        key="new-releases",
        name="New Releases",
        description="What is playing in cinemas right now.",
        discovery="now-playing",
        fallback_params={
            "sort_by": "primary_release_date.desc",
            "vote_count.gte": "50",
        },
        new_release=True,
    ),
)


BUCKET_KEYS: tuple[str, ...] = tuple(bucket.key for bucket in BUCKETS)


def top_pick_names(buckets: tuple[BucketDefinition, ...] = BUCKETS) -> frozenset[str]:
    """Return the ``listSource`` tags that count as top picks."""

    return frozenset(bucket.name for bucket in buckets if bucket.top_pick)


def new_release_names(
    buckets: tuple[BucketDefinition, ...] = BUCKETS,
) -> frozenset[str]:
    """Return the ``listSource`` tags that count as new releases."""

    return frozenset(bucket.name for bucket in buckets if bucket.new_release)
