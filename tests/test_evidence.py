"""Tests for evidence generation."""

import asyncio

from conftest import FakeVectorStore, make_scored
from reelpicks.models.library import EvidenceType
from reelpicks.services.discovery.evidence import EvidenceGenerator


def _store(watched_items):
    embeddings = {
        "tmdb:1": [1.0, 0.0, 0.0],
        "tmdb:2": [0.0, 1.0, 0.0],
        "lib:1": [0.9, 0.1, 0.0],
        "lib:2": [0.8, 0.2, 0.0],
        "lib:3": [0.7, 0.3, 0.0],
        "lib:4": [0.6, 0.4, 0.0],
        # Not in the user's history
        "lib:99": [1.0, 0.0, 0.0],
    }
    return FakeVectorStore(embeddings)


class TestEvidenceGenerator:
    def test_at_most_three_entries_best_first(self, watched_items):
        store = _store(watched_items)
        selected = [make_scored(1, 0.9), make_scored(2, 0.8)]

        evidence = asyncio.run(EvidenceGenerator(store).generate(selected, watched_items))

        assert all(len(entries) <= 3 for entries in evidence.values())
        assert [e.similar_item_id for e in evidence[1]] == ["lib:1", "lib:2", "lib:3"]
        assert all(e.similar_item_id != "lib:99" for entries in evidence.values() for e in entries)
        assert store.bulk_calls == 1

    def test_evidence_type_comes_from_watched_item(self, watched_items):
        evidence = asyncio.run(EvidenceGenerator(_store(watched_items)).generate([make_scored(1, 0.9)], watched_items))

        types = {e.similar_item_id: e.evidence_type for e in evidence[1]}
        assert types["lib:1"] is EvidenceType.FAVORITE
        assert types["lib:2"] is EvidenceType.HIGHLY_RATED
        assert types["lib:3"] is EvidenceType.WATCHED

    def test_limit_is_capped_at_three(self):
        assert EvidenceGenerator(FakeVectorStore(), limit=10).limit == 3

    def test_no_history_means_no_evidence(self, watched_items):
        generator = EvidenceGenerator(_store(watched_items))
        assert asyncio.run(generator.generate([make_scored(1, 0.9)], [])) == {}

    def test_unconfigured_store_means_no_evidence(self, watched_items):
        store = FakeVectorStore(configured=False)
        assert asyncio.run(EvidenceGenerator(store).generate([make_scored(1, 0.9)], watched_items)) == {}
        assert asyncio.run(EvidenceGenerator(None).generate([make_scored(1, 0.9)], watched_items)) == {}

    def test_candidate_without_embedding_gets_nothing(self, watched_items):
        evidence = asyncio.run(EvidenceGenerator(_store(watched_items)).generate([make_scored(5, 0.9)], watched_items))
        assert evidence == {}
