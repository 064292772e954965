import math
from collections import Counter, defaultdict
from datetime import datetime, timezone

from loguru import logger
from pydantic import BaseModel, Field

from reelpicks.core.constants import (
    MISSING_RATING_SCORE,
    NEUTRAL_SCORE,
    RATING_PRIOR_MOVIE,
    RATING_PRIOR_SERIES,
    RATING_PRIOR_VOTES,
    RECENT_HISTORY_WINDOW,
)
from reelpicks.core.exceptions import NoTasteSignal
from reelpicks.models.candidate import RawCandidate, ScoredCandidate
from reelpicks.models.discovery import DiscoveryConfig, ScoringWeights
from reelpicks.models.library import WatchedItem
from reelpicks.models.media import MediaType
from reelpicks.services.collaborators import VectorStore


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class ScoringContext(BaseModel):
    """Per-user inputs of the scorer."""

    taste_vector: list[float] | None = None
    watched: list[WatchedItem] = Field(default_factory=list)
    exposure: dict[int, int] = Field(default_factory=dict, description="tmdb_id → times already recommended")
    disliked_ids: set[int] = Field(default_factory=set)
    now: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RatingScoring:
    """Maps provider ratings to [0, 1]."""

    @staticmethod
    def weighted_rating(vote_avg: float, vote_count: int, C: float, m: int = RATING_PRIOR_VOTES) -> float:
        """IMDb-style weighted rating on 0-10 scale."""
        return ((vote_count / (vote_count + m)) * vote_avg) + ((m / (vote_count + m)) * C)

    @staticmethod
    def tiered(rating: float) -> float:
        """
        Piecewise mapping of a 0-10 rating, steeper in the 5-8 band where most
        catalog items sit.
        """
        r = clamp(rating, 0.0, 10.0)
        if r >= 8:
            return 0.8 + (r - 8) * 0.1
        if r >= 7:
            return 0.6 + (r - 7) * 0.2
        if r >= 6:
            return 0.4 + (r - 6) * 0.2
        if r >= 5:
            return 0.2 + (r - 5) * 0.2
        return r / 25

    @classmethod
    def score(cls, candidate: RawCandidate) -> float:
        if candidate.vote_average is None or not candidate.vote_count:
            return MISSING_RATING_SCORE
        prior = RATING_PRIOR_MOVIE if candidate.media_type is MediaType.MOVIE else RATING_PRIOR_SERIES
        wr = cls.weighted_rating(float(candidate.vote_average), int(candidate.vote_count), C=prior)
        return clamp(cls.tiered(wr))


class GenreScoring:
    """Genre based novelty and diversity signals."""

    @staticmethod
    def recency_weight(item: WatchedItem, now: datetime, half_life_days: float) -> float:
        if item.last_played_at is None:
            return 0.5
        played = item.last_played_at
        if played.tzinfo is None:
            played = played.replace(tzinfo=timezone.utc)
        age_days = max(0.0, (now - played).total_seconds() / 86400)
        return 0.5 ** (age_days / half_life_days)

    @classmethod
    def familiarity(cls, watched: list[WatchedItem], now: datetime, half_life_days: float) -> dict[int, float]:
        """Recency weighted exposure per genre, normalized so the most watched genre is 1."""
        weights: dict[int, float] = defaultdict(float)
        for item in watched:
            w = cls.recency_weight(item, now, half_life_days) * max(1, item.play_count)
            for genre in item.genres:
                weights[genre.id] += w
        top = max(weights.values(), default=0.0)
        if top <= 0:
            return {}
        return {gid: w / top for gid, w in weights.items()}

    @staticmethod
    def novelty(candidate: RawCandidate, familiarity: dict[int, float], exposure_count: int) -> float:
        genre_ids = candidate.genre_ids
        if genre_ids:
            base = 1.0 - sum(familiarity.get(g, 0.0) for g in genre_ids) / len(genre_ids)
        else:
            base = NEUTRAL_SCORE
        return clamp(base / (1 + max(0, exposure_count)))

    @staticmethod
    def genre_shares(genre_lists: list[list[int]]) -> dict[int, float]:
        if not genre_lists:
            return {}
        counts: Counter[int] = Counter()
        for genres in genre_lists:
            counts.update(set(genres))
        return {gid: n / len(genre_lists) for gid, n in counts.items()}

    @staticmethod
    def diversity(genre_ids: list[int], top_shares: dict[int, float], recent_shares: dict[int, float]) -> float:
        """1 minus the average crowding of the candidate's genres among top candidates and recent history."""
        if not genre_ids:
            return NEUTRAL_SCORE
        crowding = []
        for gid in genre_ids:
            if recent_shares:
                crowding.append(0.5 * top_shares.get(gid, 0.0) + 0.5 * recent_shares.get(gid, 0.0))
            else:
                crowding.append(top_shares.get(gid, 0.0))
        return clamp(1.0 - sum(crowding) / len(crowding))


class CandidateScorer:
    """
    Scores candidates on similarity, novelty, rating and diversity, each in [0, 1].

    The final score is the weighted sum of the four components. Weights are used as
    given, without normalization.
    """

    def __init__(self, vector_store: VectorStore | None = None):
        self.vector_store = vector_store

    async def similarity_scores(
        self, candidates: list[RawCandidate], taste_vector: list[float] | None
    ) -> dict[int, float]:
        """Cosine similarity to the taste vector, mapped to [0, 1]. Missing entries mean neutral."""
        if not candidates:
            return {}
        if not taste_vector or self.vector_store is None or not self.vector_store.is_configured():
            logger.info(str(NoTasteSignal("No taste vector or embedding store, similarity is neutral")))
            return {}
        by_key = {c.vector_key: c.tmdb_id for c in candidates}
        try:
            neighbors = await self.vector_store.nearest_neighbors(taste_vector, set(by_key), k=len(by_key))
        except Exception as e:
            logger.warning(f"Similarity lookup failed, treating similarity as neutral: {e}")
            return {}
        return {
            by_key[n.entity_id]: clamp((n.similarity + 1.0) / 2.0) for n in neighbors if n.entity_id in by_key
        }

    @staticmethod
    def _recent_genres(watched: list[WatchedItem]) -> list[list[int]]:
        epoch = datetime.min.replace(tzinfo=timezone.utc)

        def played_at(item: WatchedItem) -> datetime:
            if item.last_played_at is None:
                return epoch
            if item.last_played_at.tzinfo is None:
                return item.last_played_at.replace(tzinfo=timezone.utc)
            return item.last_played_at

        recent = sorted(watched, key=played_at, reverse=True)[:RECENT_HISTORY_WINDOW]
        return [[g.id for g in item.genres] for item in recent if item.genres]

    async def score(
        self,
        candidates: list[RawCandidate],
        weights: ScoringWeights,
        context: ScoringContext,
        config: DiscoveryConfig,
    ) -> list[ScoredCandidate]:
        """Score and rank candidates. Ties break on popularity, then tmdb id."""
        if not candidates:
            return []

        similarity = await self.similarity_scores(candidates, context.taste_vector)
        familiarity = GenreScoring.familiarity(context.watched, context.now, config.novelty_half_life_days)

        partial = []
        for candidate in candidates:
            sim = similarity.get(candidate.tmdb_id, NEUTRAL_SCORE)
            nov = GenreScoring.novelty(candidate, familiarity, context.exposure.get(candidate.tmdb_id, 0))
            rat = RatingScoring.score(candidate)
            base = weights.similarity * sim + weights.novelty * nov + weights.rating * rat
            partial.append((candidate, sim, nov, rat, base))

        # Diversity is judged against the strongest candidates by the other three signals
        leaders = sorted(partial, key=lambda p: (-p[4], -p[0].popularity, p[0].tmdb_id))[: config.diversity_top_k]
        top_shares = GenreScoring.genre_shares([p[0].genre_ids for p in leaders])
        recent_shares = GenreScoring.genre_shares(self._recent_genres(context.watched))

        scored = []
        for candidate, sim, nov, rat, base in partial:
            div = GenreScoring.diversity(candidate.genre_ids, top_shares, recent_shares)
            final = base + weights.diversity * div
            disliked = candidate.tmdb_id in context.disliked_ids
            if disliked:
                final *= config.dislike_reduce_factor
            scored.append(
                ScoredCandidate(
                    candidate=candidate,
                    similarity=sim,
                    novelty=nov,
                    rating=rat,
                    diversity=div,
                    final_score=final,
                    disliked=disliked,
                )
            )

        scored.sort(key=lambda s: (-s.final_score, -s.candidate.popularity, s.tmdb_id))
        return [s.model_copy(update={"rank": i}) for i, s in enumerate(scored, start=1)]
