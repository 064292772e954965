import math
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from reelpicks.core.config import settings
from reelpicks.core.exceptions import ConfigurationError
from reelpicks.models.candidate import RawCandidate
from reelpicks.models.media import MediaType


class DislikePolicy(str, Enum):
    EXCLUDE = "exclude"
    REDUCE = "reduce"
    IGNORE = "ignore"


class ScoringWeights(BaseModel):
    """
    Weights of the four score components.

    They are not required to sum to 1. Callers that need normalized composites
    should check ``is_normalized`` themselves.
    """

    model_config = ConfigDict(frozen=True)

    similarity: float = 0.4
    novelty: float = 0.2
    rating: float = 0.2
    diversity: float = 0.2

    @field_validator("similarity", "novelty", "rating", "diversity")
    @classmethod
    def _finite_non_negative(cls, value: float) -> float:
        if not math.isfinite(value) or value < 0:
            raise ValueError("weights must be finite and non-negative")
        return value

    @classmethod
    def from_tuple(cls, values: tuple[float, float, float, float]) -> "ScoringWeights":
        similarity, novelty, rating, diversity = values
        return cls(similarity=similarity, novelty=novelty, rating=rating, diversity=diversity)

    @property
    def total(self) -> float:
        return self.similarity + self.novelty + self.rating + self.diversity

    @property
    def is_normalized(self) -> bool:
        return math.isclose(self.total, 1.0, abs_tol=1e-9)


class DiscoveryConfig(BaseModel):
    """Tunables for one pipeline run. Invalid values are rejected, never clamped."""

    model_config = ConfigDict(frozen=True)

    max_candidates_per_source: int = Field(default=50, gt=0)
    min_vote_count: int = Field(default=50, ge=0)
    min_vote_average: float = Field(default=5.0, ge=0, le=10)
    max_discover_pages: int = Field(default=10, gt=0)
    page_delay_seconds: float = Field(default=0.05, ge=0)
    seed_limit: int = Field(default=10, gt=0)
    high_rating_threshold: float = Field(default=8.0, ge=0, le=10)
    selected_count: int = Field(default=20, ge=0)
    movie_weights: ScoringWeights = Field(default_factory=ScoringWeights)
    series_weights: ScoringWeights = Field(default_factory=ScoringWeights)
    lookahead_window: int = Field(default=5, gt=0)
    genre_max_share: float = Field(default=0.4, gt=0, le=1)
    dislike_reduce_factor: float = Field(default=0.5, ge=0, le=1)
    stored_candidate_limit: int = Field(default=100, gt=0)
    evidence_limit: int = Field(default=3, ge=0, le=3)
    basic_enrichment_concurrency: int = Field(default=10, gt=0)
    full_enrichment_concurrency: int = Field(default=5, gt=0)
    user_concurrency: int = Field(default=3, gt=0)
    pool_ttl_seconds: int = Field(default=43200, gt=0)
    novelty_half_life_days: float = Field(default=90.0, gt=0)
    diversity_top_k: int = Field(default=50, gt=0)

    @classmethod
    def build(cls, **values) -> "DiscoveryConfig":
        """Construct a config, raising ConfigurationError for invalid values."""
        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid discovery configuration: {exc}") from exc

    @classmethod
    def from_settings(cls, **overrides) -> "DiscoveryConfig":
        try:
            values = {
                "max_candidates_per_source": settings.DISCOVERY_MAX_CANDIDATES_PER_SOURCE,
                "min_vote_count": settings.DISCOVERY_MIN_VOTE_COUNT,
                "min_vote_average": settings.DISCOVERY_MIN_VOTE_AVERAGE,
                "max_discover_pages": settings.DISCOVERY_MAX_PAGES,
                "page_delay_seconds": settings.DISCOVERY_PAGE_DELAY_SECONDS,
                "seed_limit": settings.DISCOVERY_SEED_LIMIT,
                "high_rating_threshold": settings.DISCOVERY_HIGH_RATING_THRESHOLD,
                "selected_count": settings.DISCOVERY_SELECTED_COUNT,
                "movie_weights": ScoringWeights.from_tuple(settings.MOVIE_WEIGHTS),
                "series_weights": ScoringWeights.from_tuple(settings.SERIES_WEIGHTS),
                "lookahead_window": settings.DISCOVERY_LOOKAHEAD_WINDOW,
                "genre_max_share": settings.DISCOVERY_GENRE_MAX_SHARE,
                "dislike_reduce_factor": settings.DISCOVERY_DISLIKE_REDUCE_FACTOR,
                "stored_candidate_limit": settings.DISCOVERY_STORED_CANDIDATE_LIMIT,
                "evidence_limit": settings.DISCOVERY_EVIDENCE_LIMIT,
                "basic_enrichment_concurrency": settings.DISCOVERY_BASIC_ENRICHMENT_CONCURRENCY,
                "full_enrichment_concurrency": settings.DISCOVERY_FULL_ENRICHMENT_CONCURRENCY,
                "user_concurrency": settings.DISCOVERY_USER_CONCURRENCY,
                "pool_ttl_seconds": settings.GLOBAL_POOL_TTL_SECONDS,
                "novelty_half_life_days": settings.DISCOVERY_NOVELTY_HALF_LIFE_DAYS,
                "diversity_top_k": settings.DISCOVERY_DIVERSITY_TOP_K,
            }
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid scoring weights in settings: {exc}") from exc
        values.update(overrides)
        return cls.build(**values)

    def weights_for(self, media_type: MediaType) -> ScoringWeights:
        return self.movie_weights if media_type is MediaType.MOVIE else self.series_weights


class ProviderAvailability(BaseModel):
    """Which optional providers can be called. Computed once per run."""

    model_config = ConfigDict(frozen=True)

    tmdb: bool = False
    trakt: bool = False
    embeddings: bool = False


class GlobalFetchResult(BaseModel):
    candidates: list[RawCandidate] = Field(default_factory=list)
    per_source_counts: dict[str, int] = Field(default_factory=dict)
    total_fetched: int = 0
    unique_count: int = 0


class PersonalizedFetchResult(BaseModel):
    candidates: list[RawCandidate] = Field(default_factory=list)
    per_source_counts: dict[str, int] = Field(default_factory=dict)
    total_fetched: int = 0


class PoolSnapshot(BaseModel):
    """
    Immutable, versioned copy of the global pool for one media type.

    A refresh builds a new snapshot; readers keep whichever one they were handed.
    """

    model_config = ConfigDict(frozen=True)

    media_type: MediaType
    version: str
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    candidates: tuple[RawCandidate, ...] = ()
    per_source_counts: dict[str, int] = Field(default_factory=dict)
    total_fetched: int = 0
    unique_count: int = 0

    def is_stale(self, ttl_seconds: int, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return (now - self.fetched_at).total_seconds() >= ttl_seconds
