from pydantic_settings import BaseSettings, SettingsConfigDict

from reelpicks.core.version import __version__


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )

    APP_NAME: str = "Reelpicks"
    TMDB_API_KEY: str | None = None
    TMDB_LANGUAGE: str = "en-US"
    TRAKT_CLIENT_ID: str | None = None
    HTTP_TIMEOUT_SECONDS: float = 10.0
    HTTP_MAX_RETRIES: int = 3

    REDIS_URL: str = "redis://localhost:6379/0"
    # Maximum number of connections Redis client will open per process
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_KEY_PREFIX: str = "reelpicks"

    GLOBAL_POOL_TTL_SECONDS: int = 43200  # 12 hours

    # Discovery defaults, overridable per run through DiscoveryConfig
    DISCOVERY_MAX_CANDIDATES_PER_SOURCE: int = 50
    DISCOVERY_MIN_VOTE_COUNT: int = 50
    DISCOVERY_MIN_VOTE_AVERAGE: float = 5.0
    DISCOVERY_MAX_PAGES: int = 10
    DISCOVERY_PAGE_DELAY_SECONDS: float = 0.05
    DISCOVERY_SEED_LIMIT: int = 10
    DISCOVERY_HIGH_RATING_THRESHOLD: float = 8.0
    DISCOVERY_SELECTED_COUNT: int = 20
    DISCOVERY_LOOKAHEAD_WINDOW: int = 5
    DISCOVERY_GENRE_MAX_SHARE: float = 0.4
    DISCOVERY_DISLIKE_REDUCE_FACTOR: float = 0.5
    DISCOVERY_STORED_CANDIDATE_LIMIT: int = 100
    DISCOVERY_EVIDENCE_LIMIT: int = 3
    DISCOVERY_BASIC_ENRICHMENT_CONCURRENCY: int = 10
    DISCOVERY_FULL_ENRICHMENT_CONCURRENCY: int = 5
    DISCOVERY_USER_CONCURRENCY: int = 3
    DISCOVERY_NOVELTY_HALF_LIFE_DAYS: float = 90.0
    DISCOVERY_DIVERSITY_TOP_K: int = 50

    # Scoring weights per media type: similarity, novelty, rating, diversity
    MOVIE_WEIGHTS: tuple[float, float, float, float] = (0.4, 0.2, 0.2, 0.2)
    SERIES_WEIGHTS: tuple[float, float, float, float] = (0.4, 0.2, 0.2, 0.2)


settings = Settings()

APP_VERSION = __version__
