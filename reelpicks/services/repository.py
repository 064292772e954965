import json
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import redis.asyncio as redis
from loguru import logger
from redis.asyncio.client import Pipeline

from reelpicks.core.exceptions import PersistenceFailure
from reelpicks.models.media import MediaType
from reelpicks.models.run import Run
from reelpicks.services.collaborators import RecommendationRepository, RepositoryTransaction
from reelpicks.services.redis_service import RedisService, redis_service

GLOBAL_OWNER = "global"


class RedisKeys:
    """Key templates. Every run owns its candidate and evidence hashes."""

    def __init__(self, service: RedisService):
        self.service = service

    def run(self, run_id: str) -> str:
        return self.service.key("run", run_id)

    def candidates(self, run_id: str) -> str:
        return self.service.key("run", run_id, "candidates")

    def evidence(self, run_id: str) -> str:
        return self.service.key("run", run_id, "evidence")

    def runs_index(self, user_id: str | None, media_type: MediaType | str) -> str:
        media = media_type.value if isinstance(media_type, MediaType) else media_type
        return self.service.key("runs", user_id or GLOBAL_OWNER, media)

    def current(self, user_id: str, media_type: MediaType | str) -> str:
        media = media_type.value if isinstance(media_type, MediaType) else media_type
        return self.service.key("current", user_id, media)

    def taste(self, user_id: str) -> str:
        return self.service.key("taste", user_id)

    def exposure(self, user_id: str, media_type: MediaType | str) -> str:
        media = media_type.value if isinstance(media_type, MediaType) else media_type
        return self.service.key("exposure", user_id, media)


class RedisTransaction(RepositoryTransaction):
    """Queues writes on a MULTI/EXEC pipeline. Nothing reaches Redis before commit."""

    def __init__(self, pipe: Pipeline, keys: RedisKeys):
        self.pipe = pipe
        self.keys = keys
        self.queued = 0

    def save_run(self, run: Run) -> None:
        self.pipe.set(self.keys.run(run.id), run.model_dump_json())
        self.pipe.sadd(self.keys.runs_index(run.user_id, run.media_type), run.id)
        self.queued += 2

    def insert_candidates(self, run_id: str, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        mapping = {row["id"]: json.dumps(row) for row in rows}
        self.pipe.hset(self.keys.candidates(run_id), mapping=mapping)
        self.queued += 1

    def insert_evidence(self, run_id: str, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        mapping = {f"{row['candidate_row_id']}:{row['position']}": json.dumps(row) for row in rows}
        self.pipe.hset(self.keys.evidence(run_id), mapping=mapping)
        self.queued += 1

    def publish_run(self, run: Run, superseded_run_ids: Sequence[str]) -> None:
        if run.user_id is not None:
            self.pipe.set(self.keys.current(run.user_id, run.media_type), run.id)
            self.queued += 1
        index = self.keys.runs_index(run.user_id, run.media_type)
        for old_id in superseded_run_ids:
            # Evidence rows go first, they hang off candidate rows
            self.pipe.delete(self.keys.evidence(old_id))
            self.pipe.delete(self.keys.candidates(old_id))
            self.pipe.delete(self.keys.run(old_id))
            self.pipe.srem(index, old_id)
            self.queued += 4

    def record_exposure(self, user_id: str, media_type: MediaType, tmdb_ids: Sequence[int]) -> None:
        key = self.keys.exposure(user_id, media_type)
        for tmdb_id in tmdb_ids:
            self.pipe.hincrby(key, str(tmdb_id), 1)
            self.queued += 1


class RedisRecommendationRepository(RecommendationRepository):
    """Run artifacts stored in Redis. Bulk writes and deletes go through transactional pipelines."""

    def __init__(self, service: RedisService | None = None):
        self.service = service or redis_service
        self.keys = RedisKeys(self.service)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[RedisTransaction]:
        try:
            client = await self.service.get_client()
            async with client.pipeline(transaction=True) as pipe:
                tx = RedisTransaction(pipe, self.keys)
                yield tx
                if tx.queued:
                    await pipe.execute()
        except (redis.RedisError, OSError) as exc:
            logger.error(f"Redis transaction failed: {exc}")
            raise PersistenceFailure(f"Failed to commit recommendation data: {exc}") from exc

    async def get_run(self, run_id: str) -> Run | None:
        try:
            client = await self.service.get_client()
            raw = await client.get(self.keys.run(run_id))
        except (redis.RedisError, OSError) as exc:
            raise PersistenceFailure(f"Failed to read run {run_id}: {exc}") from exc
        return Run.model_validate_json(raw) if raw else None

    async def list_runs(self, user_id: str | None, media_type: MediaType) -> list[Run]:
        try:
            client = await self.service.get_client()
            run_ids = await client.smembers(self.keys.runs_index(user_id, media_type))
            raws = await client.mget([self.keys.run(r) for r in run_ids]) if run_ids else []
        except (redis.RedisError, OSError) as exc:
            raise PersistenceFailure(f"Failed to list runs for {user_id or GLOBAL_OWNER}: {exc}") from exc
        runs = [Run.model_validate_json(raw) for raw in raws if raw]
        return sorted(runs, key=lambda r: r.created_at)

    async def current_run_id(self, user_id: str, media_type: MediaType) -> str | None:
        try:
            client = await self.service.get_client()
            return await client.get(self.keys.current(user_id, media_type))
        except (redis.RedisError, OSError) as exc:
            raise PersistenceFailure(f"Failed to read current run for {user_id}: {exc}") from exc

    async def _read_hash(self, key: str) -> list[dict[str, Any]]:
        try:
            client = await self.service.get_client()
            values = await client.hvals(key)
        except (redis.RedisError, OSError) as exc:
            raise PersistenceFailure(f"Failed to read '{key}': {exc}") from exc
        return [json.loads(v) for v in values]

    async def get_candidates(self, run_id: str) -> list[dict[str, Any]]:
        rows = await self._read_hash(self.keys.candidates(run_id))
        return sorted(rows, key=lambda r: r["rank"])

    async def get_evidence(self, run_id: str) -> list[dict[str, Any]]:
        rows = await self._read_hash(self.keys.evidence(run_id))
        return sorted(rows, key=lambda r: (r["candidate_row_id"], r["position"]))

    async def exposure_counts(self, user_id: str, media_type: MediaType) -> dict[int, int]:
        try:
            client = await self.service.get_client()
            raw = await client.hgetall(self.keys.exposure(user_id, media_type))
        except (redis.RedisError, OSError) as exc:
            raise PersistenceFailure(f"Failed to read exposure counts for {user_id}: {exc}") from exc
        return {int(tmdb_id): int(count) for tmdb_id, count in raw.items()}

    async def _delete_in_order(self, run_ids: Sequence[str], extra_keys: Sequence[str]) -> int:
        ordered = (
            [self.keys.evidence(r) for r in run_ids]
            + [self.keys.candidates(r) for r in run_ids]
            + [self.keys.run(r) for r in run_ids]
            + list(extra_keys)
        )
        if not ordered:
            return 0
        try:
            client = await self.service.get_client()
            async with client.pipeline(transaction=True) as pipe:
                for key in ordered:
                    pipe.delete(key)
                results = await pipe.execute()
        except (redis.RedisError, OSError) as exc:
            raise PersistenceFailure(f"Failed to delete recommendation data: {exc}") from exc
        return sum(int(r) for r in results)

    async def delete_user_data(self, user_id: str) -> int:
        try:
            client = await self.service.get_client()
            index_keys = await self.service.scan_keys(self.keys.runs_index(user_id, "*"))
            run_ids: list[str] = []
            for index_key in index_keys:
                run_ids.extend(await client.smembers(index_key))
            current_keys = await self.service.scan_keys(self.keys.current(user_id, "*"))
            exposure_keys = await self.service.scan_keys(self.keys.exposure(user_id, "*"))
        except (redis.RedisError, OSError) as exc:
            raise PersistenceFailure(f"Failed to collect data for user {user_id}: {exc}") from exc
        extra = [*index_keys, *current_keys, *exposure_keys, self.keys.taste(user_id)]
        deleted = await self._delete_in_order(sorted(run_ids), extra)
        logger.info(f"Cleared {deleted} recommendation keys for user {user_id}")
        return deleted

    async def delete_all_data(self) -> int:
        try:
            run_keys = await self.service.scan_keys(self.service.key("run", "*"))
            index_keys = await self.service.scan_keys(self.service.key("runs", "*"))
            current_keys = await self.service.scan_keys(self.service.key("current", "*"))
            taste_keys = await self.service.scan_keys(self.service.key("taste", "*"))
            exposure_keys = await self.service.scan_keys(self.service.key("exposure", "*"))
        except (redis.RedisError, OSError) as exc:
            raise PersistenceFailure(f"Failed to collect recommendation keys: {exc}") from exc
        run_prefix = self.service.key("run", "")
        run_ids = sorted({k[len(run_prefix) :].split(":")[0] for k in run_keys})
        deleted = await self._delete_in_order(run_ids, [*index_keys, *current_keys, *exposure_keys, *taste_keys])
        logger.info(f"Cleared {deleted} recommendation keys for all users")
        return deleted
