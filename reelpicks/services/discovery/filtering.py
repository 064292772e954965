import asyncio
from collections.abc import Iterable

from loguru import logger
from pydantic import BaseModel, Field

from reelpicks.models.candidate import RawCandidate
from reelpicks.models.discovery import DislikePolicy
from reelpicks.models.media import MediaType
from reelpicks.services.collaborators import LibraryIndex, TasteSource, WatchHistory


def dedupe(candidates: Iterable[RawCandidate]) -> list[RawCandidate]:
    """Drop repeated tmdb ids, keeping the first occurrence and the original order."""
    unique: dict[int, RawCandidate] = {}
    for candidate in candidates:
        unique.setdefault(candidate.tmdb_id, candidate)
    return list(unique.values())


def merge_with_pool(personalized: list[RawCandidate], pool: Iterable[RawCandidate]) -> list[RawCandidate]:
    """
    Combine the personalized pool with the global pool.

    Personalized entries come first and win every collision. Merging an empty
    personalized list returns the pool unchanged.
    """
    return dedupe([*personalized, *pool])


class FilterOutcome(BaseModel):
    candidates: list[RawCandidate] = Field(default_factory=list)
    disliked_ids: set[int] = Field(default_factory=set, description="Kept but to be down-weighted by the scorer")
    removed_library: int = 0
    removed_watched: int = 0
    removed_requested: int = 0
    removed_disliked: int = 0
    removed_duplicates: int = 0


class CandidateFilter:
    """Drops library items, watched and already requested items, and disliked ones when the policy says so."""

    def __init__(
        self,
        library: LibraryIndex | None = None,
        history: WatchHistory | None = None,
        taste: TasteSource | None = None,
    ):
        self.library = library
        self.history = history
        self.taste = taste

    async def _owned(self, ids: list[int], media_type: MediaType) -> set[int]:
        if self.library is None:
            return set()
        return await self.library.owned_among(ids, media_type)

    async def _requested(self, user_id: str, ids: list[int], media_type: MediaType) -> set[int]:
        if self.library is None:
            return set()
        return await self.library.requested_among(user_id, ids, media_type)

    async def _watched(self, user_id: str, ids: list[int], media_type: MediaType) -> set[int]:
        if self.history is None:
            return set()
        return await self.history.watched_among(user_id, ids, media_type)

    async def _disliked(self, user_id: str, media_type: MediaType) -> set[int]:
        if self.taste is None:
            return set()
        return await self.taste.disliked_ids(user_id, media_type)

    async def apply(
        self,
        user_id: str,
        media_type: MediaType,
        candidates: list[RawCandidate],
        policy: DislikePolicy = DislikePolicy.EXCLUDE,
    ) -> FilterOutcome:
        unique = dedupe(candidates)
        ids = [c.tmdb_id for c in unique]
        owned, watched, requested, disliked = await asyncio.gather(
            self._owned(ids, media_type),
            self._watched(user_id, ids, media_type),
            self._requested(user_id, ids, media_type),
            self._disliked(user_id, media_type),
        )

        outcome = FilterOutcome(removed_duplicates=len(candidates) - len(unique))
        for candidate in unique:
            if candidate.tmdb_id in owned:
                outcome.removed_library += 1
            elif candidate.tmdb_id in watched:
                outcome.removed_watched += 1
            elif candidate.tmdb_id in requested:
                outcome.removed_requested += 1
            elif candidate.tmdb_id in disliked and policy is DislikePolicy.EXCLUDE:
                outcome.removed_disliked += 1
            else:
                if candidate.tmdb_id in disliked and policy is DislikePolicy.REDUCE:
                    outcome.disliked_ids.add(candidate.tmdb_id)
                outcome.candidates.append(candidate)

        logger.info(
            f"Filtered {media_type.value} candidates for {user_id}: {len(outcome.candidates)} kept, "
            f"{outcome.removed_library} in library, {outcome.removed_watched} watched, "
            f"{outcome.removed_requested} requested, {outcome.removed_disliked} disliked, "
            f"{outcome.removed_duplicates} duplicates"
        )
        return outcome
