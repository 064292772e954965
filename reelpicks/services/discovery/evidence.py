from loguru import logger

from reelpicks.core.constants import MAX_EVIDENCE_PER_CANDIDATE
from reelpicks.models.candidate import ScoredCandidate
from reelpicks.models.library import Evidence, WatchedItem
from reelpicks.services.collaborators import VectorStore


class EvidenceGenerator:
    """
    Explains each pick with the watched items closest to it in embedding space.

    Best effort: without an embedding store or a watch history the result is empty.
    """

    def __init__(self, vector_store: VectorStore | None = None, limit: int = MAX_EVIDENCE_PER_CANDIDATE):
        self.vector_store = vector_store
        self.limit = min(limit, MAX_EVIDENCE_PER_CANDIDATE)

    async def generate(self, selected: list[ScoredCandidate], watched: list[WatchedItem]) -> dict[int, list[Evidence]]:
        if not selected or not watched or self.limit <= 0:
            return {}
        if self.vector_store is None or not self.vector_store.is_configured():
            logger.debug("No embedding store configured, skipping evidence")
            return {}

        watched_by_id = {item.entity_id: item for item in watched}
        keys = {c.candidate.vector_key: c.tmdb_id for c in selected}
        try:
            neighbors = await self.vector_store.nearest_neighbors_many(list(keys), set(watched_by_id), self.limit)
        except Exception as e:
            logger.warning(f"Evidence lookup failed, continuing without explanations: {e}")
            return {}

        evidence: dict[int, list[Evidence]] = {}
        for key, tmdb_id in keys.items():
            matches = [n for n in neighbors.get(key, []) if n.entity_id in watched_by_id]
            matches.sort(key=lambda n: (-n.similarity, n.entity_id))
            entries = [
                Evidence(
                    similar_item_id=n.entity_id,
                    similar_item_title=watched_by_id[n.entity_id].title,
                    similarity=n.similarity,
                    evidence_type=watched_by_id[n.entity_id].evidence_type,
                )
                for n in matches[: self.limit]
            ]
            if entries:
                evidence[tmdb_id] = entries
        logger.debug(f"Generated evidence for {len(evidence)}/{len(selected)} selected candidates")
        return evidence
