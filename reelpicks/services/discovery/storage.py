from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from loguru import logger

from reelpicks.models.candidate import ScoredCandidate
from reelpicks.models.library import Evidence, WatchedItem
from reelpicks.models.media import MediaType
from reelpicks.models.run import Run, RunStatus, RunType
from reelpicks.services.collaborators import RecommendationRepository, RepositoryTransaction
from reelpicks.services.discovery.evidence import EvidenceGenerator


def candidate_row_id(run_id: str, tmdb_id: int) -> str:
    return f"{run_id}:{tmdb_id}"


class RecommendationStorage:
    """
    Persists run artifacts through a RecommendationRepository.

    Write methods accept an open transaction so that candidates, evidence and the
    run status of one run commit together. Without one they open their own.
    """

    def __init__(
        self,
        repository: RecommendationRepository,
        evidence_generator: EvidenceGenerator | None = None,
        stored_candidate_limit: int = 100,
    ):
        self.repository = repository
        self.evidence_generator = evidence_generator or EvidenceGenerator()
        self.stored_candidate_limit = stored_candidate_limit

    @asynccontextmanager
    async def _use(self, tx: RepositoryTransaction | None) -> AsyncIterator[RepositoryTransaction]:
        if tx is not None:
            yield tx
            return
        async with self.repository.transaction() as own:
            yield own

    async def create_run(
        self, user_id: str | None, media_type: MediaType, run_type: RunType = RunType.SCHEDULED
    ) -> Run:
        run = Run(user_id=user_id, media_type=media_type, run_type=run_type)
        async with self.repository.transaction() as tx:
            tx.save_run(run)
        logger.info(f"Started {run_type.value} {media_type.value} run {run.id} for {user_id or 'global pool'}")
        return run

    @staticmethod
    def _row(run_id: str, candidate: ScoredCandidate, rank: int, selected_rank: int | None) -> dict[str, Any]:
        item = candidate.candidate
        return {
            "id": candidate_row_id(run_id, item.tmdb_id),
            "run_id": run_id,
            "tmdb_id": item.tmdb_id,
            "imdb_id": item.imdb_id,
            "media_type": item.media_type.value,
            "title": item.title,
            "release_year": item.release_year,
            "poster_path": item.poster_path,
            "source": item.source.value,
            "source_media_id": item.source_media_id,
            "rank": rank,
            "is_selected": selected_rank is not None,
            "selected_rank": selected_rank,
            "final_score": candidate.final_score,
            "selection_diversity": candidate.selection_diversity,
            "scores": candidate.breakdown(),
        }

    def candidate_rows(
        self,
        run_id: str,
        all_candidates: list[ScoredCandidate],
        selected: list[ScoredCandidate],
        selected_ranks: dict[int, int],
    ) -> list[dict[str, Any]]:
        """
        Rows for the top ranked candidates plus every selected candidate outside them.

        Relevance rank is the position in ``all_candidates``. A selected candidate
        missing from that list keeps the rank the scorer gave it.
        """
        selected_by_id = {c.tmdb_id: c for c in selected}
        rows = []
        stored_ids = set()
        for index, candidate in enumerate(all_candidates[: self.stored_candidate_limit], start=1):
            current = selected_by_id.get(candidate.tmdb_id, candidate)
            rows.append(self._row(run_id, current, index, selected_ranks.get(candidate.tmdb_id)))
            stored_ids.add(candidate.tmdb_id)

        positions = {c.tmdb_id: i for i, c in enumerate(all_candidates, start=1)}
        for candidate in selected:
            if candidate.tmdb_id in stored_ids:
                continue
            rank = positions.get(candidate.tmdb_id, candidate.rank)
            rows.append(self._row(run_id, candidate, rank, selected_ranks.get(candidate.tmdb_id)))
            stored_ids.add(candidate.tmdb_id)
        return rows

    async def store_candidates(
        self,
        run_id: str,
        all_candidates: list[ScoredCandidate],
        selected: list[ScoredCandidate],
        selected_ranks: dict[int, int],
        tx: RepositoryTransaction | None = None,
    ) -> int:
        rows = self.candidate_rows(run_id, all_candidates, selected, selected_ranks)
        async with self._use(tx) as t:
            t.insert_candidates(run_id, rows)
        flagged = sum(1 for r in rows if r["is_selected"])
        logger.info(f"Run {run_id}: writing {len(rows)} candidate rows ({flagged} selected)")
        return len(rows)

    async def store_evidence(
        self,
        run_id: str,
        selected: list[ScoredCandidate],
        watched: list[WatchedItem],
        tx: RepositoryTransaction | None = None,
    ) -> dict[int, list[Evidence]]:
        """Compute evidence for all selected candidates in one lookup and write it in one bulk insert."""
        evidence = await self.evidence_generator.generate(selected, watched)
        rows = [
            {
                "candidate_row_id": candidate_row_id(run_id, tmdb_id),
                "run_id": run_id,
                "tmdb_id": tmdb_id,
                "position": position,
                "similar_item_id": entry.similar_item_id,
                "similar_item_title": entry.similar_item_title,
                "similarity": entry.similarity,
                "evidence_type": entry.evidence_type.value,
            }
            for tmdb_id, entries in evidence.items()
            for position, entry in enumerate(entries, start=1)
        ]
        if rows:
            async with self._use(tx) as t:
                t.insert_evidence(run_id, rows)
        return evidence

    async def update_run_stats(self, run: Run, **counts: int) -> Run:
        updated = run.with_stats(**counts)
        async with self.repository.transaction() as tx:
            tx.save_run(updated)
        return updated

    async def finalize_run(
        self,
        run: Run,
        status: RunStatus,
        error_message: str | None = None,
        tx: RepositoryTransaction | None = None,
        selected_ids: Sequence[int] = (),
    ) -> Run:
        """
        Close the run. A completed run replaces the user's previous recommendations,
        a failed one leaves them in place.

        ``selected_ids`` are counted as exposed to the user once the run completes.
        """
        finalized = run.finalize(status, error_message)
        superseded: list[str] = []
        if status is RunStatus.COMPLETED:
            previous = await self.repository.list_runs(run.user_id, run.media_type)
            superseded = [r.id for r in previous if r.id != run.id and r.is_finalized]
        async with self._use(tx) as t:
            t.save_run(finalized)
            if status is RunStatus.COMPLETED:
                t.publish_run(finalized, superseded)
                if run.user_id is not None and selected_ids:
                    t.record_exposure(run.user_id, run.media_type, list(selected_ids))
        return finalized

    async def recent_exposure(self, user_id: str, media_type: MediaType) -> dict[int, int]:
        """How many completed runs have recommended each item to the user."""
        return await self.repository.exposure_counts(user_id, media_type)

    async def clear_user_recommendations(self, user_id: str) -> int:
        return await self.repository.delete_user_data(user_id)

    async def clear_all_recommendations(self) -> int:
        return await self.repository.delete_all_data()
