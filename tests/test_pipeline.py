"""End-to-end tests for the discovery pipeline with in-memory collaborators."""

import asyncio

import pytest

from conftest import (
    ACTION,
    COMEDY,
    DRAMA,
    HORROR,
    FakeCatalog,
    FakeHistory,
    FakeLibrary,
    FakeTaste,
    FakeVectorStore,
    genres,
    make_candidate,
)
from reelpicks.core.exceptions import CandidateExhaustedError, ConfigurationError, PersistenceFailure
from reelpicks.models.candidate import CandidateDetails
from reelpicks.models.library import DiscoveryUser
from reelpicks.models.media import MediaType
from reelpicks.models.run import RunStatus
from reelpicks.services.discovery.pipeline import DiscoveryPipeline


@pytest.fixture
def stocked_catalog() -> FakeCatalog:
    catalog = FakeCatalog()
    genre_cycle = [(DRAMA,), (COMEDY,), (ACTION,), (HORROR,)]
    catalog.discover_pages = {
        1: [
            make_candidate(i, genres=genres(*genre_cycle[i % 4]), vote_average=5.0 + (i % 5), imdb_id=None)
            for i in range(1, 31)
        ]
    }
    catalog.trending = [make_candidate(i, popularity=50.0) for i in range(31, 36)]
    catalog.recommendations = {901: {1: [make_candidate(i) for i in range(100, 106)]}}
    catalog.details = {i: CandidateDetails(imdb_id=f"tt{i}") for i in range(1, 200)}
    return catalog


def _pipeline(catalog, repository, config, watched_items, **kw):
    store = FakeVectorStore(
        {
            **{f"tmdb:{i}": [1.0, float(i % 4)] for i in range(1, 200)},
            "lib:1": [1.0, 0.0],
            "lib:2": [1.0, 1.0],
            "lib:3": [1.0, 2.0],
        }
    )
    defaults = {
        "history": FakeHistory(watched=watched_items, recent_seeds=[901]),
        "taste": FakeTaste(vector=[1.0, 0.5]),
        "library": FakeLibrary(owned={2}),
        "vector_store": store,
    }
    defaults.update(kw)
    return DiscoveryPipeline(catalog, repository, config=config, **defaults)


class TestRunForUser:
    def test_full_run_stores_selection_and_evidence(self, stocked_catalog, repository, config, user, watched_items):
        config = config.model_copy(update={"selected_count": 10})
        pipeline = _pipeline(stocked_catalog, repository, config, watched_items)

        result = asyncio.run(pipeline.run_for_user(user, MediaType.MOVIE))

        assert result.run.status is RunStatus.COMPLETED
        assert len(result.selection.selected) == 10
        selected_ids = {s.tmdb_id for s in result.selection.selected}
        assert 2 not in selected_ids
        assert all(s.candidate.imdb_id for s in result.selection.selected)
        assert all(len(entries) <= 3 for entries in result.evidence.values())
        assert result.evidence

        stored_run = repository.runs[result.run.id]
        assert stored_run.status is RunStatus.COMPLETED
        assert stored_run.selected_count == 10
        assert stored_run.candidates_stored == result.stored_rows
        assert repository.current[(user.id, MediaType.MOVIE)] == result.run.id
        rows = repository.candidates[result.run.id]
        assert sum(1 for r in rows if r["is_selected"]) == 10

    def test_completed_runs_feed_exposure(self, stocked_catalog, repository, config, user, watched_items):
        config = config.model_copy(update={"selected_count": 10})
        pipeline = _pipeline(stocked_catalog, repository, config, watched_items)

        first = asyncio.run(pipeline.run_for_user(user, MediaType.MOVIE))
        asyncio.run(pipeline.run_for_user(user, MediaType.MOVIE))

        exposure = repository.exposure[(user.id, MediaType.MOVIE)]
        assert sum(exposure.values()) == 20
        assert all(exposure[s.tmdb_id] >= 1 for s in first.selection.selected)

    def test_dislike_policy_failure_keeps_taste_vector(self, stocked_catalog, repository, config, user, watched_items):
        class PolicyUnavailable(FakeTaste):
            async def get_dislike_policy(self, user_id):
                raise RuntimeError("settings store down")

        pipeline = _pipeline(
            stocked_catalog, repository, config, watched_items, taste=PolicyUnavailable(vector=[1.0, 0.5])
        )

        result = asyncio.run(pipeline.run_for_user(user, MediaType.MOVIE))

        assert result.run.status is RunStatus.COMPLETED
        assert any(s.similarity != 0.5 for s in result.selection.ranked)

    def test_failing_source_does_not_fail_run(self, stocked_catalog, repository, config, user, watched_items):
        stocked_catalog.failing = {"trending"}
        pipeline = _pipeline(stocked_catalog, repository, config, watched_items)

        result = asyncio.run(pipeline.run_for_user(user, MediaType.MOVIE))

        assert result.run.status is RunStatus.COMPLETED
        snapshot = pipeline.pool._snapshots[MediaType.MOVIE]
        assert snapshot.per_source_counts["trakt_trending"] == 0

    def test_user_without_history_still_gets_results(self, stocked_catalog, repository, config, user):
        pipeline = _pipeline(
            stocked_catalog, repository, config, [], history=FakeHistory(), taste=FakeTaste(vector=None)
        )

        result = asyncio.run(pipeline.run_for_user(user, MediaType.MOVIE))

        assert result.run.status is RunStatus.COMPLETED
        assert all(s.similarity == 0.5 for s in result.selection.ranked)
        assert result.evidence == {}

    def test_exhaustion_fails_the_run(self, repository, config, user, watched_items):
        pipeline = _pipeline(FakeCatalog(), repository, config, watched_items)

        with pytest.raises(CandidateExhaustedError):
            asyncio.run(pipeline.run_for_user(user, MediaType.MOVIE))

        (failed,) = [r for r in repository.runs.values() if r.user_id == user.id]
        assert failed.status is RunStatus.FAILED
        assert "No movie candidates" in failed.error_message

    def test_write_failure_keeps_previous_recommendations(
        self, stocked_catalog, repository, config, user, watched_items
    ):
        pipeline = _pipeline(stocked_catalog, repository, config, watched_items)
        first = asyncio.run(pipeline.run_for_user(user, MediaType.MOVIE))
        repository.fail_commits = True

        with pytest.raises(PersistenceFailure):
            asyncio.run(pipeline.run_for_user(user, MediaType.MOVIE))

        assert repository.current[(user.id, MediaType.MOVIE)] == first.run.id
        assert len(repository.candidates[first.run.id]) == first.stored_rows
        failed = [r for r in repository.runs.values() if r.status is RunStatus.FAILED]
        assert len(failed) == 1
        assert failed[0].id not in repository.candidates

    def test_invalid_config_is_rejected_before_run(self, stocked_catalog, repository, config, user, watched_items):
        pipeline = _pipeline(stocked_catalog, repository, config, watched_items)

        with pytest.raises(ConfigurationError):
            asyncio.run(pipeline.run_for_user(user, MediaType.MOVIE, config={"selected_count": -5}))

        assert repository.runs == {}


class TestRunForUsers:
    def test_pool_is_fetched_once_per_cycle(self, stocked_catalog, repository, config, watched_items):
        pipeline = _pipeline(stocked_catalog, repository, config, watched_items)
        users = [DiscoveryUser(id=f"user-{n}") for n in range(4)]

        summary = asyncio.run(pipeline.run_for_users(users, [MediaType.MOVIE]))

        assert summary.success == 4
        assert summary.failed == 0
        assert len([c for c in stocked_catalog.calls if c[0] == "discover" and c[1] == 1]) == 1
        global_runs = [r for r in repository.runs.values() if r.user_id is None]
        assert len(global_runs) == 1
        assert global_runs[0].status is RunStatus.COMPLETED

    def test_one_failing_user_does_not_stop_others(self, stocked_catalog, repository, config, watched_items):
        class PickyHistory(FakeHistory):
            async def watched_among(self, user_id, tmdb_ids, media_type):
                if user_id == "bad":
                    return set(tmdb_ids)
                return await super().watched_among(user_id, tmdb_ids, media_type)

        pipeline = _pipeline(stocked_catalog, repository, config, watched_items, history=PickyHistory())
        users = [DiscoveryUser(id="good"), DiscoveryUser(id="bad")]

        summary = asyncio.run(pipeline.run_for_users(users, [MediaType.MOVIE]))

        assert summary.success == 1
        assert summary.failed == 1
        assert "bad:movie" in summary.failures
