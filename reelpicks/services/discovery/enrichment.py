import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from reelpicks.core.exceptions import EnrichmentMiss
from reelpicks.models.candidate import (
    BASIC_ENRICHMENT_FIELDS,
    FULL_ENRICHMENT_FIELDS,
    RawCandidate,
    ScoredCandidate,
)
from reelpicks.models.media import MediaType
from reelpicks.services.catalog import MediaCatalog


class CandidateEnricher:
    """
    Fills metadata gaps from provider detail lookups.

    Basic enrichment costs one detail call per incomplete candidate and runs on whole
    pools. Full enrichment adds credits and is meant for the selected few. Neither
    ever overwrites a value the candidate already has, drops a candidate, or changes
    the order of the list.
    """

    def __init__(self, catalog: MediaCatalog):
        self.catalog = catalog

    async def _map_bounded(
        self,
        candidates: list[RawCandidate],
        enrich: Callable[[RawCandidate], Awaitable[RawCandidate]],
        concurrency: int,
    ) -> list[RawCandidate]:
        sem = asyncio.Semaphore(concurrency)

        async def _run(candidate: RawCandidate) -> RawCandidate:
            async with sem:
                return await enrich(candidate)

        return list(await asyncio.gather(*(_run(c) for c in candidates)))

    async def _basic_one(self, candidate: RawCandidate, media_type: MediaType) -> RawCandidate:
        if not candidate.needs_basic_enrichment:
            return candidate
        try:
            details = await self.catalog.fetch_details(media_type, candidate.tmdb_id)
        except Exception as e:
            logger.debug(str(EnrichmentMiss(candidate.tmdb_id, f"details: {e}")))
            return candidate
        return candidate.fill_missing(details, BASIC_ENRICHMENT_FIELDS)

    async def _full_one(self, candidate: RawCandidate, media_type: MediaType) -> RawCandidate:
        if not candidate.needs_full_enrichment:
            return candidate
        try:
            details = await self.catalog.fetch_details(media_type, candidate.tmdb_id)
        except Exception as e:
            logger.debug(str(EnrichmentMiss(candidate.tmdb_id, f"details: {e}")))
            return candidate
        try:
            details = details.combine(await self.catalog.fetch_credits(media_type, candidate.tmdb_id))
        except Exception as e:
            # Keep what the detail lookup gave us
            logger.debug(str(EnrichmentMiss(candidate.tmdb_id, f"credits: {e}")))
        return candidate.fill_missing(details, FULL_ENRICHMENT_FIELDS)

    async def enrich_basic(
        self, candidates: list[RawCandidate], media_type: MediaType, concurrency: int = 10
    ) -> list[RawCandidate]:
        """Fill poster, backdrop, language and overview where poster or language is missing."""
        pending = sum(1 for c in candidates if c.needs_basic_enrichment)
        if not pending:
            return list(candidates)
        result = await self._map_bounded(candidates, lambda c: self._basic_one(c, media_type), concurrency)
        filled = sum(1 for before, after in zip(candidates, result) if after is not before)
        logger.info(f"Basic enrichment: {filled}/{pending} {media_type.value} candidates updated")
        return result

    async def enrich_full(
        self, candidates: list[RawCandidate], media_type: MediaType, concurrency: int = 5
    ) -> list[RawCandidate]:
        """Fill cross-reference id, cast, directors, runtime and tagline on top of the basic fields."""
        pending = sum(1 for c in candidates if c.needs_full_enrichment)
        if not pending:
            return list(candidates)
        result = await self._map_bounded(candidates, lambda c: self._full_one(c, media_type), concurrency)
        filled = sum(1 for before, after in zip(candidates, result) if after is not before)
        logger.info(f"Full enrichment: {filled}/{pending} {media_type.value} candidates updated")
        return result

    async def enrich_selected(
        self, selected: list[ScoredCandidate], media_type: MediaType, concurrency: int = 5
    ) -> list[ScoredCandidate]:
        """Full enrichment for scored candidates. Scores are left untouched."""
        enriched = await self.enrich_full([s.candidate for s in selected], media_type, concurrency)
        return [
            s if s.candidate is c else s.model_copy(update={"candidate": c}) for s, c in zip(selected, enriched)
        ]
