import asyncio
from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger

from reelpicks.core.exceptions import CandidateExhaustedError, PersistenceFailure
from reelpicks.models.discovery import DiscoveryConfig, DislikePolicy, ProviderAvailability
from reelpicks.models.library import DiscoveryUser, WatchedItem
from reelpicks.models.media import MediaType
from reelpicks.models.run import BatchSummary, PipelineResult, Run, RunStatus, RunType
from reelpicks.services.catalog import MediaCatalog
from reelpicks.services.collaborators import (
    LibraryIndex,
    RecommendationRepository,
    TasteSource,
    VectorStore,
    WatchHistory,
)
from reelpicks.services.discovery.enrichment import CandidateEnricher
from reelpicks.services.discovery.evidence import EvidenceGenerator
from reelpicks.services.discovery.filtering import CandidateFilter, merge_with_pool
from reelpicks.services.discovery.pool import GlobalPoolCache
from reelpicks.services.discovery.scoring import CandidateScorer, ScoringContext
from reelpicks.services.discovery.selection import DiversitySelector
from reelpicks.services.discovery.sources import CandidateSourcing
from reelpicks.services.discovery.storage import RecommendationStorage
from reelpicks.services.redis_service import RedisService


class DiscoveryPipeline:
    """
    Runs discovery end to end for one user or a batch of users.

    Sourcing → basic enrichment → merge/filter → scoring → selection → full
    enrichment of the selection → evidence → storage. Sources, enrichment and
    evidence degrade on failure. Only running out of candidates or failing the
    final write fails a run.
    """

    def __init__(
        self,
        catalog: MediaCatalog,
        repository: RecommendationRepository,
        history: WatchHistory | None = None,
        taste: TasteSource | None = None,
        library: LibraryIndex | None = None,
        vector_store: VectorStore | None = None,
        redis_service: RedisService | None = None,
        config: DiscoveryConfig | None = None,
    ):
        self.config = config or DiscoveryConfig.from_settings()
        self.catalog = catalog
        self.repository = repository
        self.history = history
        self.taste = taste
        self.vector_store = vector_store

        self.sourcing = CandidateSourcing(catalog, history)
        self.enricher = CandidateEnricher(catalog)
        self.pool = GlobalPoolCache(self.sourcing, self.enricher, redis_service)
        self.filter = CandidateFilter(library, history, taste)
        self.scorer = CandidateScorer(vector_store)
        self.storage = RecommendationStorage(
            repository,
            EvidenceGenerator(vector_store, limit=self.config.evidence_limit),
            stored_candidate_limit=self.config.stored_candidate_limit,
        )

    def _resolve_config(self, config: DiscoveryConfig | Mapping[str, Any] | None) -> DiscoveryConfig:
        if config is None:
            return self.config
        if isinstance(config, DiscoveryConfig):
            return config
        return DiscoveryConfig.build(**{**self.config.model_dump(), **config})

    def availability(self) -> ProviderAvailability:
        providers = self.catalog.availability()
        embeddings = self.vector_store is not None and self.vector_store.is_configured()
        return providers.model_copy(update={"embeddings": embeddings})

    async def _fail(self, run: Run, error: Exception) -> Run:
        message = str(error) or type(error).__name__
        try:
            return await self.storage.finalize_run(run, RunStatus.FAILED, message)
        except PersistenceFailure as e:
            logger.error(f"Could not record failure of run {run.id}: {e}")
            return run

    async def refresh_global_pool(
        self, media_type: MediaType, config: DiscoveryConfig | Mapping[str, Any] | None = None
    ) -> Run:
        """Rebuild the shared pool for one media type, recorded as a global run."""
        config = self._resolve_config(config)
        run = await self.storage.create_run(None, media_type, RunType.GLOBAL)
        try:
            snapshot = await self.pool.refresh(media_type, config, self.availability())
            if not snapshot.candidates:
                logger.warning(f"Global {media_type.value} pool is empty, user runs rely on personalized sources")
            run = run.with_stats(
                candidates_fetched=snapshot.total_fetched,
                candidates_filtered=snapshot.unique_count,
                candidates_stored=len(snapshot.candidates),
            )
            return await self.storage.finalize_run(run, RunStatus.COMPLETED)
        except Exception as e:
            logger.exception(f"Global {media_type.value} pool refresh failed: {e}")
            await self._fail(run, e)
            raise

    async def _taste_inputs(
        self, user_id: str, media_type: MediaType
    ) -> tuple[list[float] | None, list[WatchedItem], DislikePolicy]:
        taste_vector = None
        watched: list[WatchedItem] = []
        policy = DislikePolicy.EXCLUDE
        if self.taste is not None:
            try:
                taste_vector = await self.taste.get_user_taste_vector(user_id, media_type)
            except Exception as e:
                logger.warning(f"Taste vector lookup failed for {user_id}, similarity will be neutral: {e}")
            try:
                policy = await self.taste.get_dislike_policy(user_id)
            except Exception as e:
                logger.warning(f"Dislike policy lookup failed for {user_id}, using {policy.value}: {e}")
        if self.history is not None:
            try:
                watched = await self.history.watched_items(user_id, media_type)
            except Exception as e:
                logger.warning(f"Watch history lookup failed for {user_id}: {e}")
        return taste_vector, watched, policy

    async def run_for_user(
        self,
        user: DiscoveryUser,
        media_type: MediaType,
        run_type: RunType = RunType.SCHEDULED,
        config: DiscoveryConfig | Mapping[str, Any] | None = None,
    ) -> PipelineResult:
        # Invalid configuration is rejected before any run exists
        config = self._resolve_config(config)
        availability = self.availability()
        run = await self.storage.create_run(user.id, media_type, run_type)

        try:
            snapshot = await self.pool.get_snapshot(media_type, config, availability)
            personalized = await self.sourcing.fetch_personalized(user, media_type, config, availability)
            personal = await self.enricher.enrich_basic(
                personalized.candidates, media_type, concurrency=config.basic_enrichment_concurrency
            )
            merged = merge_with_pool(personal, snapshot.candidates)

            taste_vector, watched, policy = await self._taste_inputs(user.id, media_type)
            outcome = await self.filter.apply(user.id, media_type, merged, policy)
            run = run.with_stats(
                candidates_fetched=personalized.total_fetched + len(snapshot.candidates),
                candidates_filtered=len(outcome.candidates),
            )
            if not outcome.candidates:
                raise CandidateExhaustedError(f"No {media_type.value} candidates left for user {user.id}")

            context = ScoringContext(
                taste_vector=taste_vector,
                watched=watched,
                exposure=await self.storage.recent_exposure(user.id, media_type),
                disliked_ids=outcome.disliked_ids,
            )
            scored = await self.scorer.score(outcome.candidates, config.weights_for(media_type), context, config)
            selector = DiversitySelector(config.lookahead_window, config.genre_max_share)
            selection = selector.select(scored, config.selected_count)
            selected = await self.enricher.enrich_selected(
                selection.selected, media_type, concurrency=config.full_enrichment_concurrency
            )
            selection = selection.model_copy(update={"selected": selected})
            run = run.with_stats(candidates_scored=len(scored), selected_count=len(selected))

            async with self.repository.transaction() as tx:
                stored = await self.storage.store_candidates(run.id, scored, selected, selection.selected_ranks, tx)
                evidence = await self.storage.store_evidence(run.id, selected, watched, tx)
                completed = await self.storage.finalize_run(
                    run.with_stats(candidates_stored=stored),
                    RunStatus.COMPLETED,
                    tx=tx,
                    selected_ids=[c.tmdb_id for c in selected],
                )
        except CandidateExhaustedError as e:
            logger.warning(f"Run {run.id} failed: {e}")
            await self._fail(run, e)
            raise
        except Exception as e:
            logger.exception(f"Run {run.id} for {user.id} failed: {e}")
            await self._fail(run, e)
            raise

        logger.info(
            f"Run {completed.id} completed for {user.id}: {len(selected)} selected from {len(scored)} scored "
            f"in {completed.duration_ms}ms"
        )
        return PipelineResult(run=completed, selection=selection, evidence=evidence, stored_rows=stored)

    async def run_for_users(
        self,
        users: Iterable[DiscoveryUser],
        media_types: Iterable[MediaType] = (MediaType.MOVIE, MediaType.SERIES),
        run_type: RunType = RunType.SCHEDULED,
    ) -> BatchSummary:
        """
        One scheduling cycle: refresh each global pool once, then run every user
        against it with bounded concurrency. A failing user does not stop the others.
        """
        users = list(users)
        media_types = list(media_types)
        for media_type in media_types:
            try:
                await self.refresh_global_pool(media_type)
            except Exception as e:
                logger.warning(f"Continuing without a fresh {media_type.value} pool: {e}")

        sem = asyncio.Semaphore(self.config.user_concurrency)

        async def _one(user: DiscoveryUser, media_type: MediaType) -> PipelineResult | Exception:
            async with sem:
                try:
                    return await self.run_for_user(user, media_type, run_type)
                except Exception as e:
                    return e

        jobs = [(user, media_type) for user in users for media_type in media_types]
        results = await asyncio.gather(*(_one(u, m) for u, m in jobs))

        summary = BatchSummary()
        for (user, media_type), result in zip(jobs, results):
            if isinstance(result, Exception):
                summary.failed += 1
                summary.failures[f"{user.id}:{media_type.value}"] = str(result) or type(result).__name__
            else:
                summary.success += 1
                summary.total_selected += len(result.selection.selected)
        logger.info(
            f"Discovery cycle finished: {summary.success} succeeded, {summary.failed} failed, "
            f"{summary.total_selected} items selected"
        )
        return summary
