from enum import Enum


class MediaType(str, Enum):
    MOVIE = "movie"
    SERIES = "series"

    @property
    def tmdb_path(self) -> str:
        """Path segment TMDB uses for this media type."""
        return "movie" if self is MediaType.MOVIE else "tv"

    @property
    def trakt_path(self) -> str:
        """Path segment Trakt uses for this media type."""
        return "movies" if self is MediaType.MOVIE else "shows"

    @property
    def trakt_item_key(self) -> str:
        """Key wrapping the item inside Trakt list entries."""
        return "movie" if self is MediaType.MOVIE else "show"


class CandidateSource(str, Enum):
    # Global pool
    TMDB_DISCOVER = "tmdb_discover"
    TRAKT_TRENDING = "trakt_trending"
    TRAKT_POPULAR = "trakt_popular"
    # Personalized pool
    TMDB_RECOMMENDATIONS = "tmdb_recommendations"
    TMDB_SIMILAR = "tmdb_similar"
    TRAKT_RECOMMENDATIONS = "trakt_recommendations"


GLOBAL_SOURCES: tuple[CandidateSource, ...] = (
    CandidateSource.TMDB_DISCOVER,
    CandidateSource.TRAKT_TRENDING,
    CandidateSource.TRAKT_POPULAR,
)

PERSONALIZED_SOURCES: tuple[CandidateSource, ...] = (
    CandidateSource.TMDB_RECOMMENDATIONS,
    CandidateSource.TMDB_SIMILAR,
    CandidateSource.TRAKT_RECOMMENDATIONS,
)
