"""Shared fixtures and in-memory collaborators for the discovery tests."""

import math
from collections.abc import Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import pytest

from reelpicks.core.exceptions import PersistenceFailure
from reelpicks.models.candidate import CandidateDetails, Genre, RawCandidate, ScoredCandidate
from reelpicks.models.discovery import DiscoveryConfig, DislikePolicy, ProviderAvailability
from reelpicks.models.library import DiscoveryUser, WatchedItem
from reelpicks.models.media import CandidateSource, MediaType
from reelpicks.models.run import Run
from reelpicks.services.catalog import MediaCatalog
from reelpicks.services.collaborators import (
    LibraryIndex,
    Neighbor,
    RecommendationRepository,
    RepositoryTransaction,
    TasteSource,
    VectorStore,
    WatchHistory,
)

ACTION, COMEDY, DRAMA, HORROR, SCIFI = 28, 35, 18, 27, 878
GENRE_NAMES = {ACTION: "Action", COMEDY: "Comedy", DRAMA: "Drama", HORROR: "Horror", SCIFI: "Science Fiction"}


def genres(*ids: int) -> tuple[Genre, ...]:
    return tuple(Genre(id=i, name=GENRE_NAMES.get(i, "")) for i in ids)


def make_candidate(tmdb_id: int, **overrides: Any) -> RawCandidate:
    values: dict[str, Any] = {
        "tmdb_id": tmdb_id,
        "media_type": MediaType.MOVIE,
        "title": f"Title {tmdb_id}",
        "source": CandidateSource.TMDB_DISCOVER,
        "original_language": "en",
        "poster_path": f"/poster{tmdb_id}.jpg",
        "release_year": 2020,
        "genres": genres(DRAMA),
        "vote_average": 7.0,
        "vote_count": 1000,
        "popularity": 10.0,
    }
    values.update(overrides)
    return RawCandidate(**values)


def make_scored(tmdb_id: int, final_score: float, rank: int = 0, genre_ids: Sequence[int] = (DRAMA,), **kw: Any):
    return ScoredCandidate(
        candidate=make_candidate(tmdb_id, genres=genres(*genre_ids), **kw),
        similarity=0.5,
        novelty=0.5,
        rating=0.5,
        diversity=0.5,
        final_score=final_score,
        rank=rank,
    )


def transport_error() -> httpx.ConnectError:
    return httpx.ConnectError("connection refused")


class FakeCatalog(MediaCatalog):
    """Serves canned pages. Names listed in ``failing`` raise a transport error."""

    def __init__(self, tmdb: bool = True, trakt: bool = True):
        self.tmdb = tmdb
        self.trakt = trakt
        self.discover_pages: dict[int, list[RawCandidate]] = {}
        self.trending: list[RawCandidate] = []
        self.popular: list[RawCandidate] = []
        self.recommendations: dict[int, dict[int, list[RawCandidate]]] = {}
        self.similar: dict[int, dict[int, list[RawCandidate]]] = {}
        self.user_recommendations: list[RawCandidate] = []
        self.details: dict[int, CandidateDetails] = {}
        self.credits: dict[int, CandidateDetails] = {}
        self.failing: set[str] = set()
        self.calls: list[tuple] = []

    def _check(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if name in self.failing:
            raise transport_error()

    @staticmethod
    def _seeded(candidate: RawCandidate, source: CandidateSource, seed_id: int) -> RawCandidate:
        return candidate.model_copy(update={"source": source, "source_media_id": seed_id})

    def availability(self) -> ProviderAvailability:
        return ProviderAvailability(tmdb=self.tmdb, trakt=self.trakt)

    async def fetch_discover(self, media_type, page, min_vote_count, min_vote_average):
        self._check("discover", page)
        return list(self.discover_pages.get(page, []))

    async def fetch_trending(self, media_type, limit):
        self._check("trending", limit)
        return list(self.trending[:limit])

    async def fetch_popular(self, media_type, limit):
        self._check("popular", limit)
        return list(self.popular[:limit])

    async def fetch_recommendations_for(self, media_type, seed_id, page):
        self._check("recommendations", seed_id, page)
        items = self.recommendations.get(seed_id, {}).get(page, [])
        return [self._seeded(c, CandidateSource.TMDB_RECOMMENDATIONS, seed_id) for c in items]

    async def fetch_similar_to(self, media_type, seed_id, page):
        self._check("similar", seed_id, page)
        items = self.similar.get(seed_id, {}).get(page, [])
        return [self._seeded(c, CandidateSource.TMDB_SIMILAR, seed_id) for c in items]

    async def fetch_user_recommendations(self, media_type, access_token, limit):
        self._check("user_recommendations", access_token)
        return list(self.user_recommendations)

    async def fetch_details(self, media_type, tmdb_id):
        self._check("details", tmdb_id)
        if tmdb_id not in self.details:
            raise httpx.HTTPStatusError(
                "not found",
                request=httpx.Request("GET", "https://example.test"),
                response=httpx.Response(404),
            )
        return self.details[tmdb_id]

    async def fetch_credits(self, media_type, tmdb_id):
        self._check("credits", tmdb_id)
        return self.credits.get(tmdb_id, CandidateDetails())


def cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeVectorStore(VectorStore):
    def __init__(self, embeddings: dict[str, list[float]] | None = None, configured: bool = True):
        self.embeddings = embeddings or {}
        self.configured = configured
        self.bulk_calls = 0

    def is_configured(self) -> bool:
        return self.configured

    async def embedding_for(self, entity_id: str) -> list[float] | None:
        return self.embeddings.get(entity_id)

    async def nearest_neighbors(self, query_embedding, candidate_ids, k):
        scored = [
            Neighbor(entity_id=entity_id, similarity=cosine(query_embedding, self.embeddings[entity_id]))
            for entity_id in candidate_ids
            if entity_id in self.embeddings
        ]
        scored.sort(key=lambda n: (-n.similarity, n.entity_id))
        return scored[:k]

    async def nearest_neighbors_many(self, entity_ids, candidate_ids, k):
        self.bulk_calls += 1
        return await super().nearest_neighbors_many(entity_ids, candidate_ids, k)


class FakeLibrary(LibraryIndex):
    def __init__(self, owned: set[int] | None = None, requested: dict[str, set[int]] | None = None):
        self.owned = owned or set()
        self.requested = requested or {}

    async def is_in_library(self, tmdb_id, media_type):
        return tmdb_id in self.owned

    async def requested_among(self, user_id, tmdb_ids, media_type):
        return self.requested.get(user_id, set()) & set(tmdb_ids)


class FakeHistory(WatchHistory):
    def __init__(
        self,
        watched: list[WatchedItem] | None = None,
        recent_seeds: list[int] | None = None,
        top_rated_seeds: list[int] | None = None,
    ):
        self.watched = watched or []
        self.recent_seeds = recent_seeds or []
        self.top_rated_seeds = top_rated_seeds or []

    async def has_watched(self, user_id, tmdb_id, media_type):
        return any(item.tmdb_id == tmdb_id for item in self.watched)

    async def recent_seed_ids(self, user_id, media_type, limit):
        return self.recent_seeds[:limit]

    async def top_rated_seed_ids(self, user_id, media_type, min_rating, limit):
        return self.top_rated_seeds[:limit]

    async def watched_items(self, user_id, media_type):
        return list(self.watched)


class FakeTaste(TasteSource):
    def __init__(
        self,
        vector: list[float] | None = None,
        policy: DislikePolicy = DislikePolicy.EXCLUDE,
        disliked: set[int] | None = None,
    ):
        self.vector = vector
        self.policy = policy
        self.disliked = disliked or set()

    async def get_user_taste_vector(self, user_id, media_type):
        return self.vector

    async def get_dislike_policy(self, user_id):
        return self.policy

    async def disliked_ids(self, user_id, media_type):
        return set(self.disliked)


class InMemoryTransaction(RepositoryTransaction):
    def __init__(self):
        self.ops: list[tuple] = []

    def save_run(self, run: Run) -> None:
        self.ops.append(("save_run", run))

    def insert_candidates(self, run_id: str, rows: list[dict[str, Any]]) -> None:
        self.ops.append(("candidates", run_id, rows))

    def insert_evidence(self, run_id: str, rows: list[dict[str, Any]]) -> None:
        self.ops.append(("evidence", run_id, rows))

    def publish_run(self, run: Run, superseded_run_ids: Sequence[str]) -> None:
        self.ops.append(("publish", run, list(superseded_run_ids)))

    def record_exposure(self, user_id: str, media_type: MediaType, tmdb_ids: Sequence[int]) -> None:
        self.ops.append(("exposure", user_id, media_type, list(tmdb_ids)))


class InMemoryRepository(RecommendationRepository):
    """Applies a transaction's writes only when the block exits cleanly."""

    def __init__(self):
        self.runs: dict[str, Run] = {}
        self.candidates: dict[str, list[dict[str, Any]]] = {}
        self.evidence: dict[str, list[dict[str, Any]]] = {}
        self.current: dict[tuple[str, MediaType], str] = {}
        self.taste_profiles: set[str] = set()
        self.exposure: dict[tuple[str, MediaType], dict[int, int]] = {}
        self.fail_commits = False
        self.commits = 0
        self.deleted: list[str] = []

    @asynccontextmanager
    async def transaction(self):
        tx = InMemoryTransaction()
        yield tx
        if self.fail_commits and any(op[0] == "candidates" for op in tx.ops):
            raise PersistenceFailure("simulated write failure")
        self.commits += 1
        for op in tx.ops:
            if op[0] == "save_run":
                self.runs[op[1].id] = op[1]
            elif op[0] == "candidates":
                self.candidates.setdefault(op[1], []).extend(op[2])
            elif op[0] == "evidence":
                self.evidence.setdefault(op[1], []).extend(op[2])
            elif op[0] == "publish":
                run, superseded = op[1], op[2]
                if run.user_id is not None:
                    self.current[(run.user_id, run.media_type)] = run.id
                for old_id in superseded:
                    self._drop_run(old_id)
            elif op[0] == "exposure":
                counts = self.exposure.setdefault((op[1], op[2]), {})
                for tmdb_id in op[3]:
                    counts[tmdb_id] = counts.get(tmdb_id, 0) + 1

    def _drop_run(self, run_id: str) -> None:
        if self.evidence.pop(run_id, None) is not None:
            self.deleted.append(f"evidence:{run_id}")
        if self.candidates.pop(run_id, None) is not None:
            self.deleted.append(f"candidates:{run_id}")
        if self.runs.pop(run_id, None) is not None:
            self.deleted.append(f"run:{run_id}")

    async def get_run(self, run_id):
        return self.runs.get(run_id)

    async def list_runs(self, user_id, media_type):
        runs = [r for r in self.runs.values() if r.user_id == user_id and r.media_type == media_type]
        return sorted(runs, key=lambda r: r.created_at)

    async def current_run_id(self, user_id, media_type):
        return self.current.get((user_id, media_type))

    async def get_candidates(self, run_id):
        return sorted(self.candidates.get(run_id, []), key=lambda r: r["rank"])

    async def get_evidence(self, run_id):
        return list(self.evidence.get(run_id, []))

    async def exposure_counts(self, user_id, media_type):
        return dict(self.exposure.get((user_id, media_type), {}))

    async def delete_user_data(self, user_id):
        run_ids = [r.id for r in self.runs.values() if r.user_id == user_id]
        for run_id in run_ids:
            self._drop_run(run_id)
        self.current = {k: v for k, v in self.current.items() if k[0] != user_id}
        if user_id in self.taste_profiles:
            self.taste_profiles.discard(user_id)
            self.deleted.append(f"taste:{user_id}")
        for key in [k for k in self.exposure if k[0] == user_id]:
            del self.exposure[key]
            self.deleted.append(f"exposure:{user_id}:{key[1].value}")
        return len(run_ids)

    async def delete_all_data(self):
        run_ids = list(self.runs)
        for run_id in run_ids:
            self._drop_run(run_id)
        self.current.clear()
        self.taste_profiles.clear()
        self.exposure.clear()
        return len(run_ids)


@pytest.fixture
def config() -> DiscoveryConfig:
    return DiscoveryConfig.build(page_delay_seconds=0)


@pytest.fixture
def user() -> DiscoveryUser:
    return DiscoveryUser(id="user-1", username="sam")


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 10, 1, tzinfo=timezone.utc)


@pytest.fixture
def watched_items(now) -> list[WatchedItem]:
    return [
        WatchedItem(
            entity_id="lib:1", tmdb_id=901, title="Fav", genres=genres(DRAMA), is_favorite=True, play_count=1,
            last_played_at=now - timedelta(days=2),
        ),
        WatchedItem(
            entity_id="lib:2", tmdb_id=902, title="Rewatched", genres=genres(DRAMA, ACTION), play_count=3,
            last_played_at=now - timedelta(days=10),
        ),
        WatchedItem(
            entity_id="lib:3", tmdb_id=903, title="Once", genres=genres(COMEDY), play_count=1,
            last_played_at=now - timedelta(days=400),
        ),
        WatchedItem(
            entity_id="lib:4", tmdb_id=904, title="Other", genres=genres(HORROR), play_count=1,
            last_played_at=now - timedelta(days=30),
        ),
    ]
