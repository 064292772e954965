from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from reelpicks.models.media import CandidateSource, MediaType

# Precedence of fields a detail fetch may fill, in merge order
BASIC_ENRICHMENT_FIELDS: tuple[str, ...] = (
    "poster_path",
    "backdrop_path",
    "original_language",
    "overview",
)
FULL_ENRICHMENT_FIELDS: tuple[str, ...] = BASIC_ENRICHMENT_FIELDS + (
    "imdb_id",
    "original_title",
    "release_year",
    "genres",
    "cast",
    "directors",
    "runtime_minutes",
    "tagline",
    "vote_average",
    "vote_count",
)


def _is_missing(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (list, tuple)) and not value)


class Genre(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str = ""


class CastMember(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    character: str | None = None
    profile_path: str | None = None


class CandidateDetails(BaseModel):
    """Fields returned by a provider detail or credits lookup. Anything may be absent."""

    poster_path: str | None = None
    backdrop_path: str | None = None
    original_language: str | None = None
    overview: str | None = None
    imdb_id: str | None = None
    original_title: str | None = None
    release_year: int | None = None
    genres: tuple[Genre, ...] = ()
    cast: tuple[CastMember, ...] = ()
    directors: tuple[str, ...] = ()
    runtime_minutes: int | None = None
    tagline: str | None = None
    vote_average: float | None = None
    vote_count: int | None = None

    def combine(self, other: "CandidateDetails") -> "CandidateDetails":
        """Merge two lookups for the same item, values already present here win."""
        updates = {
            name: getattr(other, name)
            for name in FULL_ENRICHMENT_FIELDS
            if _is_missing(getattr(self, name)) and not _is_missing(getattr(other, name))
        }
        return self.model_copy(update=updates)


class RawCandidate(BaseModel):
    """
    A content item under evaluation, as produced by a source.

    Immutable. Enrichment produces a new instance through ``fill_missing``.
    """

    model_config = ConfigDict(frozen=True)

    tmdb_id: int
    media_type: MediaType
    title: str
    source: CandidateSource
    imdb_id: str | None = None
    original_title: str | None = None
    original_language: str | None = None
    overview: str | None = None
    release_year: int | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    genres: tuple[Genre, ...] = ()
    vote_average: float | None = None
    vote_count: int | None = None
    popularity: float = 0.0
    source_media_id: int | None = Field(default=None, description="Seed item the candidate was found through")
    cast: tuple[CastMember, ...] = ()
    directors: tuple[str, ...] = ()
    runtime_minutes: int | None = None
    tagline: str | None = None

    @property
    def vector_key(self) -> str:
        """Identifier of this item in the shared embedding space."""
        return f"tmdb:{self.tmdb_id}"

    @property
    def genre_ids(self) -> list[int]:
        return [g.id for g in self.genres]

    @property
    def title_key(self) -> str | None:
        """Normalized title + year, identifies re-releases listed under several ids. None without a year."""
        if self.release_year is None:
            return None
        return f"{self.title.strip().lower()}|{self.release_year}"

    @property
    def needs_basic_enrichment(self) -> bool:
        return not self.poster_path or not self.original_language

    @property
    def needs_full_enrichment(self) -> bool:
        return not self.poster_path or not self.imdb_id or not self.cast or not self.original_language

    def fill_missing(
        self, details: CandidateDetails, fields: tuple[str, ...] = FULL_ENRICHMENT_FIELDS
    ) -> "RawCandidate":
        """
        Return a copy with empty fields filled from ``details``.

        Fields are visited in ``fields`` order. A value already on the candidate is never
        overwritten, so the first non-empty value seen for a field wins.
        """
        updates = {}
        for name in fields:
            if not _is_missing(getattr(self, name)):
                continue
            value = getattr(details, name)
            if not _is_missing(value):
                updates[name] = value
        if not updates:
            return self
        return self.model_copy(update=updates)


class ScoredCandidate(BaseModel):
    """A candidate with its four score components and composite score."""

    model_config = ConfigDict(frozen=True)

    candidate: RawCandidate
    similarity: float
    novelty: float
    rating: float
    diversity: float
    final_score: float
    rank: int = 0
    disliked: bool = False
    selection_diversity: float | None = Field(
        default=None, description="Share of genres new to the picks made before this one, set by the selector"
    )

    @property
    def tmdb_id(self) -> int:
        return self.candidate.tmdb_id

    @property
    def genre_ids(self) -> list[int]:
        return self.candidate.genre_ids

    def breakdown(self) -> dict[str, float]:
        return {
            "similarity": round(self.similarity, 6),
            "novelty": round(self.novelty, 6),
            "rating": round(self.rating, 6),
            "diversity": round(self.diversity, 6),
        }


class SelectionResult(BaseModel):
    """Ordered selection plus the full ranked list it was drawn from."""

    selected: list[ScoredCandidate] = Field(default_factory=list)
    selected_ranks: dict[int, int] = Field(default_factory=dict, description="tmdb_id → selection rank (1-based)")
    ranked: list[ScoredCandidate] = Field(default_factory=list)
    deferred: int = 0

    def is_selected(self, tmdb_id: int) -> bool:
        return tmdb_id in self.selected_ranks
