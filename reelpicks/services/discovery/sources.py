import asyncio
import functools
import math
from collections.abc import Awaitable, Callable

from loguru import logger

from reelpicks.core.exceptions import SourceUnavailable
from reelpicks.models.candidate import RawCandidate
from reelpicks.models.discovery import (
    DiscoveryConfig,
    GlobalFetchResult,
    PersonalizedFetchResult,
    ProviderAvailability,
)
from reelpicks.models.library import DiscoveryUser
from reelpicks.models.media import CandidateSource, MediaType
from reelpicks.services.catalog import MediaCatalog
from reelpicks.services.collaborators import WatchHistory

PageFetcher = Callable[[int, int], Awaitable[list[RawCandidate]]]


class CandidateSourcing:
    """
    Pulls candidates from every configured source.

    Sources run concurrently. Paging inside a source is sequential with a fixed
    delay between pages. A failing source contributes nothing and never aborts
    the others.
    """

    def __init__(self, catalog: MediaCatalog, history: WatchHistory | None = None):
        self.catalog = catalog
        self.history = history

    async def _guarded(
        self, source: CandidateSource, enabled: bool, fetch: Callable[[], Awaitable[list[RawCandidate]]]
    ) -> list[RawCandidate]:
        if not enabled:
            logger.debug(f"Skipping {source.value}: provider not configured")
            return []
        try:
            return await fetch()
        except Exception as e:
            logger.warning(str(SourceUnavailable(source.value, str(e) or type(e).__name__)))
            return []

    async def _page_through(
        self,
        fetch_page: Callable[[int], Awaitable[list[RawCandidate]]],
        max_pages: int,
        limit: int,
        config: DiscoveryConfig,
        seen: set[int],
        collected: list[RawCandidate],
        overall_limit: int,
    ) -> int:
        """Append up to ``limit`` unseen items from consecutive pages. Returns how many were added."""
        added = 0
        for page in range(1, max_pages + 1):
            if page > 1 and config.page_delay_seconds:
                await asyncio.sleep(config.page_delay_seconds)
            items = await fetch_page(page)
            if not items:
                break
            for candidate in items:
                if candidate.tmdb_id in seen:
                    continue
                seen.add(candidate.tmdb_id)
                collected.append(candidate)
                added += 1
                if added >= limit or len(collected) >= overall_limit:
                    return added
        return added

    async def _fetch_discover(self, media_type: MediaType, config: DiscoveryConfig) -> list[RawCandidate]:
        collected: list[RawCandidate] = []

        async def fetch_page(page: int) -> list[RawCandidate]:
            return await self.catalog.fetch_discover(
                media_type, page, config.min_vote_count, config.min_vote_average
            )

        limit = config.max_candidates_per_source
        await self._page_through(fetch_page, config.max_discover_pages, limit, config, set(), collected, limit)
        return collected

    async def _fetch_seeded(self, seeds: list[int], fetch: PageFetcher, config: DiscoveryConfig) -> list[RawCandidate]:
        """Split the per-source budget evenly across seeds."""
        if not seeds:
            return []
        limit = config.max_candidates_per_source
        per_seed = math.ceil(limit / len(seeds))
        pages_per_seed = max(1, math.ceil(config.max_discover_pages / len(seeds)))
        collected: list[RawCandidate] = []
        seen: set[int] = set()
        for seed_id in seeds:
            if len(collected) >= limit:
                break
            fetch_page = functools.partial(fetch, seed_id)
            await self._page_through(fetch_page, pages_per_seed, per_seed, config, seen, collected, limit)
        return collected

    async def fetch_global(
        self, media_type: MediaType, config: DiscoveryConfig, availability: ProviderAvailability | None = None
    ) -> GlobalFetchResult:
        """Fetch discover, trending and popular, deduplicated with first occurrence winning."""
        availability = availability or self.catalog.availability()
        limit = config.max_candidates_per_source

        discover, trending, popular = await asyncio.gather(
            self._guarded(
                CandidateSource.TMDB_DISCOVER, availability.tmdb, lambda: self._fetch_discover(media_type, config)
            ),
            self._guarded(
                CandidateSource.TRAKT_TRENDING,
                availability.trakt,
                lambda: self.catalog.fetch_trending(media_type, limit),
            ),
            self._guarded(
                CandidateSource.TRAKT_POPULAR,
                availability.trakt,
                lambda: self.catalog.fetch_popular(media_type, limit),
            ),
        )

        per_source_counts = {
            CandidateSource.TMDB_DISCOVER.value: len(discover),
            CandidateSource.TRAKT_TRENDING.value: len(trending),
            CandidateSource.TRAKT_POPULAR.value: len(popular),
        }
        unique: dict[int, RawCandidate] = {}
        for candidate in [*discover, *trending, *popular]:
            unique.setdefault(candidate.tmdb_id, candidate)

        total = sum(per_source_counts.values())
        logger.info(f"Global {media_type.value} fetch: {total} fetched, {len(unique)} unique ({per_source_counts})")
        return GlobalFetchResult(
            candidates=list(unique.values()),
            per_source_counts=per_source_counts,
            total_fetched=total,
            unique_count=len(unique),
        )

    async def fetch_personalized(
        self,
        user: DiscoveryUser,
        media_type: MediaType,
        config: DiscoveryConfig,
        availability: ProviderAvailability | None = None,
    ) -> PersonalizedFetchResult:
        """
        Fetch recommendations seeded by the user's own history.

        Candidates keep their seed in ``source_media_id``. No dedupe across sources,
        merging takes care of that.
        """
        availability = availability or self.catalog.availability()

        async def recommendations() -> list[RawCandidate]:
            seeds = await self.history.recent_seed_ids(user.id, media_type, config.seed_limit)
            fetch = functools.partial(self.catalog.fetch_recommendations_for, media_type)
            return await self._fetch_seeded(seeds, fetch, config)

        async def similar() -> list[RawCandidate]:
            seeds = await self.history.top_rated_seed_ids(
                user.id, media_type, config.high_rating_threshold, config.seed_limit
            )
            fetch = functools.partial(self.catalog.fetch_similar_to, media_type)
            return await self._fetch_seeded(seeds, fetch, config)

        async def trakt_recommendations() -> list[RawCandidate]:
            items = await self.catalog.fetch_user_recommendations(
                media_type, user.trakt_access_token, config.max_candidates_per_source
            )
            return items[: config.max_candidates_per_source]

        has_history = self.history is not None
        recs, sims, trakt = await asyncio.gather(
            self._guarded(CandidateSource.TMDB_RECOMMENDATIONS, availability.tmdb and has_history, recommendations),
            self._guarded(CandidateSource.TMDB_SIMILAR, availability.tmdb and has_history, similar),
            self._guarded(
                CandidateSource.TRAKT_RECOMMENDATIONS, availability.trakt and user.has_trakt_link, trakt_recommendations
            ),
        )

        per_source_counts = {
            CandidateSource.TMDB_RECOMMENDATIONS.value: len(recs),
            CandidateSource.TMDB_SIMILAR.value: len(sims),
            CandidateSource.TRAKT_RECOMMENDATIONS.value: len(trakt),
        }
        total = sum(per_source_counts.values())
        logger.info(f"Personalized {media_type.value} fetch for {user.id}: {total} fetched ({per_source_counts})")
        return PersonalizedFetchResult(
            candidates=[*recs, *sims, *trakt], per_source_counts=per_source_counts, total_fetched=total
        )
