"""Tests for basic and full enrichment."""

import asyncio

from conftest import make_candidate, make_scored
from reelpicks.models.candidate import CandidateDetails, CastMember
from reelpicks.models.media import MediaType
from reelpicks.services.discovery.enrichment import CandidateEnricher


class TestBasicEnrichment:
    def test_only_incomplete_candidates_are_fetched(self, catalog):
        complete = make_candidate(1)
        no_poster = make_candidate(2, poster_path=None, overview=None)
        catalog.details = {2: CandidateDetails(poster_path="/two.jpg", overview="Two", imdb_id="tt2")}

        result = asyncio.run(CandidateEnricher(catalog).enrich_basic([complete, no_poster], MediaType.MOVIE))

        assert [c[1] for c in catalog.calls if c[0] == "details"] == [2]
        assert result[0] is complete
        assert result[1].poster_path == "/two.jpg"
        assert result[1].overview == "Two"
        # Not a basic field
        assert result[1].imdb_id is None

    def test_failure_keeps_candidate_and_order(self, catalog):
        candidates = [make_candidate(i, original_language=None) for i in (3, 1, 2)]
        catalog.details = {1: CandidateDetails(original_language="fr")}

        result = asyncio.run(CandidateEnricher(catalog).enrich_basic(candidates, MediaType.MOVIE))

        assert [c.tmdb_id for c in result] == [3, 1, 2]
        assert result[1].original_language == "fr"
        assert result[0].original_language is None


class TestFullEnrichment:
    def test_details_and_credits_are_merged(self, catalog):
        candidate = make_candidate(5, imdb_id=None, poster_path="/keep.jpg")
        catalog.details = {5: CandidateDetails(imdb_id="tt5", poster_path="/other.jpg", runtime_minutes=101)}
        catalog.credits = {5: CandidateDetails(cast=(CastMember(id=1, name="Lead"),), directors=("Dir",))}

        (result,) = asyncio.run(CandidateEnricher(catalog).enrich_full([candidate], MediaType.MOVIE))

        assert result.imdb_id == "tt5"
        assert result.poster_path == "/keep.jpg"
        assert result.runtime_minutes == 101
        assert result.directors == ("Dir",)
        assert result.cast[0].name == "Lead"

    def test_credits_failure_keeps_details(self, catalog):
        candidate = make_candidate(6)
        catalog.details = {6: CandidateDetails(imdb_id="tt6")}
        catalog.failing = {"credits"}

        (result,) = asyncio.run(CandidateEnricher(catalog).enrich_full([candidate], MediaType.MOVIE))

        assert result.imdb_id == "tt6"
        assert result.cast == ()

    def test_selected_scores_survive_enrichment(self, catalog):
        scored = make_scored(7, final_score=0.9, rank=1)
        catalog.details = {7: CandidateDetails(imdb_id="tt7")}

        (result,) = asyncio.run(CandidateEnricher(catalog).enrich_selected([scored], MediaType.MOVIE))

        assert result.candidate.imdb_id == "tt7"
        assert result.final_score == 0.9
        assert result.rank == 1
