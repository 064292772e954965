"""
Contracts for the systems the pipeline consumes but does not own.

Concrete implementations live with the host application. The Redis-backed
``RecommendationRepository`` in ``reelpicks.services.repository`` is the only one
bundled here.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from typing import Any

from pydantic import BaseModel, ConfigDict

from reelpicks.models.discovery import DislikePolicy
from reelpicks.models.library import WatchedItem
from reelpicks.models.media import MediaType
from reelpicks.models.run import Run


class Neighbor(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_id: str
    similarity: float


class VectorStore(ABC):
    """Nearest-neighbor search over the shared embedding space (cosine similarity)."""

    @abstractmethod
    def is_configured(self) -> bool:
        """False when no embedding model is available."""

    @abstractmethod
    async def embedding_for(self, entity_id: str) -> list[float] | None:
        pass

    @abstractmethod
    async def nearest_neighbors(
        self, query_embedding: Sequence[float], candidate_ids: set[str], k: int
    ) -> list[Neighbor]:
        """Top ``k`` of ``candidate_ids`` by cosine similarity to the query, best first."""

    async def nearest_neighbors_many(
        self, entity_ids: Sequence[str], candidate_ids: set[str], k: int
    ) -> dict[str, list[Neighbor]]:
        """
        Nearest neighbors for several stored entities at once.

        Backends able to answer this in a single server-side query should override it.
        """

        async def _one(entity_id: str) -> tuple[str, list[Neighbor]]:
            embedding = await self.embedding_for(entity_id)
            if embedding is None:
                return entity_id, []
            return entity_id, await self.nearest_neighbors(embedding, candidate_ids, k)

        results = await asyncio.gather(*(_one(e) for e in entity_ids))
        return {entity_id: neighbors for entity_id, neighbors in results if neighbors}


class LibraryIndex(ABC):
    @abstractmethod
    async def is_in_library(self, tmdb_id: int, media_type: MediaType) -> bool:
        pass

    async def owned_among(self, tmdb_ids: Sequence[int], media_type: MediaType) -> set[int]:
        """Subset of ``tmdb_ids`` already in the library. Override with a bulk lookup when possible."""
        flags = await asyncio.gather(*(self.is_in_library(i, media_type) for i in tmdb_ids))
        return {i for i, owned in zip(tmdb_ids, flags) if owned}

    async def requested_among(self, user_id: str, tmdb_ids: Sequence[int], media_type: MediaType) -> set[int]:
        """Subset of ``tmdb_ids`` the user has asked to add and whose request is still open."""
        return set()


class WatchHistory(ABC):
    @abstractmethod
    async def has_watched(self, user_id: str, tmdb_id: int, media_type: MediaType) -> bool:
        pass

    async def watched_among(self, user_id: str, tmdb_ids: Sequence[int], media_type: MediaType) -> set[int]:
        flags = await asyncio.gather(*(self.has_watched(user_id, i, media_type) for i in tmdb_ids))
        return {i for i, watched in zip(tmdb_ids, flags) if watched}

    @abstractmethod
    async def recent_seed_ids(self, user_id: str, media_type: MediaType, limit: int) -> list[int]:
        """TMDB ids of the most recently engaged items, newest first."""

    @abstractmethod
    async def top_rated_seed_ids(
        self, user_id: str, media_type: MediaType, min_rating: float, limit: int
    ) -> list[int]:
        """TMDB ids of the user's highest rated items at or above ``min_rating``."""

    @abstractmethod
    async def watched_items(self, user_id: str, media_type: MediaType) -> list[WatchedItem]:
        pass


class TasteSource(ABC):
    @abstractmethod
    async def get_user_taste_vector(self, user_id: str, media_type: MediaType) -> list[float] | None:
        pass

    async def get_dislike_policy(self, user_id: str) -> DislikePolicy:
        return DislikePolicy.EXCLUDE

    async def disliked_ids(self, user_id: str, media_type: MediaType) -> set[int]:
        return set()


class RepositoryTransaction(ABC):
    """Writes collected here are committed together or not at all."""

    @abstractmethod
    def save_run(self, run: Run) -> None:
        pass

    @abstractmethod
    def insert_candidates(self, run_id: str, rows: list[dict[str, Any]]) -> None:
        pass

    @abstractmethod
    def insert_evidence(self, run_id: str, rows: list[dict[str, Any]]) -> None:
        pass

    @abstractmethod
    def publish_run(self, run: Run, superseded_run_ids: Sequence[str]) -> None:
        """Point the user's current recommendations at ``run`` and drop superseded runs."""

    @abstractmethod
    def record_exposure(self, user_id: str, media_type: MediaType, tmdb_ids: Sequence[int]) -> None:
        """Add one to the times each item was recommended to the user. Survives run pruning."""


class RecommendationRepository(ABC):
    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[RepositoryTransaction]:
        pass

    @abstractmethod
    async def get_run(self, run_id: str) -> Run | None:
        pass

    @abstractmethod
    async def list_runs(self, user_id: str | None, media_type: MediaType) -> list[Run]:
        pass

    @abstractmethod
    async def current_run_id(self, user_id: str, media_type: MediaType) -> str | None:
        pass

    @abstractmethod
    async def get_candidates(self, run_id: str) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    async def get_evidence(self, run_id: str) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    async def exposure_counts(self, user_id: str, media_type: MediaType) -> dict[int, int]:
        pass

    @abstractmethod
    async def delete_user_data(self, user_id: str) -> int:
        """Delete evidence, candidates, runs, exposure counts and taste profile of one user atomically."""

    @abstractmethod
    async def delete_all_data(self) -> int:
        pass
