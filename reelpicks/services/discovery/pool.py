import asyncio
import uuid
from collections import defaultdict

from loguru import logger
from pydantic import ValidationError

from reelpicks.models.discovery import DiscoveryConfig, PoolSnapshot, ProviderAvailability
from reelpicks.models.media import MediaType
from reelpicks.services.discovery.enrichment import CandidateEnricher
from reelpicks.services.discovery.sources import CandidateSourcing
from reelpicks.services.redis_service import RedisService


class GlobalPoolCache:
    """
    Global candidate pool per media type, shared by every user run.

    Each refresh publishes a new immutable snapshot with a single SET, so readers
    always see a complete pool. Concurrent callers that find the pool missing or
    stale wait on one refresh instead of fetching in parallel.
    """

    def __init__(
        self,
        sourcing: CandidateSourcing,
        enricher: CandidateEnricher,
        redis_service: RedisService | None = None,
    ):
        self.sourcing = sourcing
        self.enricher = enricher
        self.redis_service = redis_service
        self._snapshots: dict[MediaType, PoolSnapshot] = {}
        self._locks: dict[MediaType, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _key(self, media_type: MediaType) -> str:
        return self.redis_service.key("pool", media_type.value)

    async def _load(self, media_type: MediaType) -> PoolSnapshot | None:
        if self.redis_service is None:
            return None
        raw = await self.redis_service.get(self._key(media_type))
        if not raw:
            return None
        try:
            return PoolSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable {media_type.value} pool snapshot: {e}")
            return None

    async def _store(self, snapshot: PoolSnapshot, ttl_seconds: int) -> None:
        if self.redis_service is None:
            return
        ok = await self.redis_service.set(self._key(snapshot.media_type), snapshot.model_dump_json(), ttl=ttl_seconds)
        if not ok:
            logger.warning(f"Pool snapshot {snapshot.version} kept in process only, Redis write failed")

    async def _refresh_locked(
        self, media_type: MediaType, config: DiscoveryConfig, availability: ProviderAvailability | None
    ) -> PoolSnapshot:
        fetched = await self.sourcing.fetch_global(media_type, config, availability)
        candidates = await self.enricher.enrich_basic(
            fetched.candidates, media_type, concurrency=config.basic_enrichment_concurrency
        )
        snapshot = PoolSnapshot(
            media_type=media_type,
            version=uuid.uuid4().hex,
            candidates=tuple(candidates),
            per_source_counts=fetched.per_source_counts,
            total_fetched=fetched.total_fetched,
            unique_count=fetched.unique_count,
        )
        await self._store(snapshot, config.pool_ttl_seconds)
        self._snapshots[media_type] = snapshot
        logger.info(f"Published {media_type.value} pool {snapshot.version} with {len(candidates)} candidates")
        return snapshot

    async def refresh(
        self, media_type: MediaType, config: DiscoveryConfig, availability: ProviderAvailability | None = None
    ) -> PoolSnapshot:
        """Fetch a new pool unconditionally."""
        async with self._locks[media_type]:
            return await self._refresh_locked(media_type, config, availability)

    async def get_snapshot(
        self, media_type: MediaType, config: DiscoveryConfig, availability: ProviderAvailability | None = None
    ) -> PoolSnapshot:
        """Return a fresh snapshot, refreshing at most once however many callers ask."""
        current = self._snapshots.get(media_type)
        if current is not None and not current.is_stale(config.pool_ttl_seconds):
            return current

        async with self._locks[media_type]:
            current = self._snapshots.get(media_type)
            if current is not None and not current.is_stale(config.pool_ttl_seconds):
                return current
            stored = await self._load(media_type)
            if stored is not None and not stored.is_stale(config.pool_ttl_seconds):
                self._snapshots[media_type] = stored
                return stored
            return await self._refresh_locked(media_type, config, availability)

    def invalidate(self, media_type: MediaType | None = None) -> None:
        """Forget in-process snapshots so the next read goes back to Redis."""
        if media_type is None:
            self._snapshots.clear()
        else:
            self._snapshots.pop(media_type, None)
