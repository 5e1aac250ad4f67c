"""
Tests for `services/session_store.py` using pytest.

Focus:
- Lazy session creation and activity refresh
- Bounded history (50) with lifetime counters and running-mean average score
- Score normalization on save (out of range or missing -> 50)
- History slicing and limit clamping, stats for unknown sessions
- Retention cleanup with an injectable clock
- Durability: snapshot reload, load failures start empty, write failures raise StorageFailure
- Concurrent saves on the same session are never lost

The store runs over `InMemorySnapshotBackend` (or the failing variant from conftest) and a manual
clock, so the tests are deterministic and touch no files.
"""

import asyncio

import pytest

from conftest import FailingBackend
from services.persistence import InMemorySnapshotBackend
from services.session_store import SessionStore
from shared.errors import InvalidInput, StorageFailure
from shared.models import AnalysisResult


def result_with(score, security=0, performance=0, quality=0):
    return AnalysisResult(
        security_issues=[{"severity": "high", "issue": f"s{i}"} for i in range(security)],
        performance_issues=[{"severity": "low", "issue": f"p{i}"} for i in range(performance)],
        quality_issues=[{"severity": "medium", "issue": f"q{i}"} for i in range(quality)],
        overall_score=score,
    )


def test_get_or_create_creates_then_refreshes(memory_store, clock):
    async def scenario():
        created = await memory_store.get_or_create_session("s-1", user_id="u-1")
        clock.advance(5_000)
        refreshed = await memory_store.get_or_create_session("s-1")
        return created, refreshed

    created, refreshed = asyncio.run(scenario())

    assert created.total_analyses == 0
    assert created.analyses == []
    assert created.created_at == created.last_activity
    assert refreshed.user_id == "u-1"
    assert refreshed.created_at == created.created_at
    assert refreshed.last_activity == created.last_activity + 5_000
    assert memory_store.backend.save_count == 2


def test_get_or_create_rejects_empty_id(memory_store):
    with pytest.raises(InvalidInput):
        asyncio.run(memory_store.get_or_create_session(""))


def test_returned_session_is_a_copy(memory_store):
    async def scenario():
        session = await memory_store.get_or_create_session("s-1")
        session.total_analyses = 999
        return await memory_store.get_stats("s-1")

    assert asyncio.run(scenario()).total_analyses == 0


def test_fifty_one_saves_keep_fifty_and_count_all(memory_store):
    async def scenario():
        for i in range(51):
            await memory_store.save_analysis("s-1", result_with(score=i % 101, quality=1))
        history = await memory_store.get_history("s-1", limit=100)
        session = await memory_store.get_or_create_session("s-1")
        return history, session

    history, session = asyncio.run(scenario())

    assert len(history) == 50
    assert len(session.analyses) == 50
    assert session.total_analyses == 51
    # Oldest (score 0) was evicted first; most recent last
    assert history[0].overall_score == 1
    assert history[-1].overall_score == 50


def test_average_uses_lifetime_running_total(clock):
    store = SessionStore(InMemorySnapshotBackend(), history_limit=2, clock=clock)

    async def scenario():
        for score in (10, 20, 30):
            await store.save_analysis("s-1", result_with(score=score))
        return await store.get_stats("s-1")

    stats = asyncio.run(scenario())

    # (10 + 20 + 30) / 3, even though only the last two are retained
    assert stats.average_score == 20
    assert stats.total_analyses == 3


def test_average_rounds_half_up(memory_store):
    async def scenario():
        await memory_store.save_analysis("s-1", result_with(score=82))
        await memory_store.save_analysis("s-1", result_with(score=83))
        return await memory_store.get_stats("s-1")

    assert asyncio.run(scenario()).average_score == 83


@pytest.mark.parametrize("raw_score", [150, -5, "high", None])
def test_out_of_range_or_missing_score_is_stored_as_fifty(memory_store, raw_score):
    payload = {"securityIssues": [], "performanceIssues": [], "qualityIssues": [], "summary": ""}
    if raw_score is not None:
        payload["overallScore"] = raw_score

    async def scenario():
        await memory_store.save_analysis("s-1", payload)
        return await memory_store.get_history("s-1")

    history = asyncio.run(scenario())

    assert history[0].overall_score == 50


def test_save_analysis_rejects_missing_id_or_result(memory_store):
    with pytest.raises(InvalidInput):
        asyncio.run(memory_store.save_analysis("", result_with(80)))
    with pytest.raises(InvalidInput):
        asyncio.run(memory_store.save_analysis("s-1", None))
    with pytest.raises(InvalidInput):
        asyncio.run(memory_store.save_analysis("s-1", {"securityIssues": "not a list"}))


def test_try_save_analysis_reports_failures_as_values(memory_store, failing_store):
    ok, reason = asyncio.run(memory_store.try_save_analysis("s-1", result_with(80)))
    assert (ok, reason) == (True, "")

    ok, reason = asyncio.run(memory_store.try_save_analysis("", result_with(80)))
    assert ok is False and "Session id" in reason

    ok, reason = asyncio.run(failing_store.try_save_analysis("s-1", result_with(80)))
    assert ok is False and "disk full" in reason


def test_save_analysis_surfaces_storage_failure(failing_store):
    with pytest.raises(StorageFailure):
        asyncio.run(failing_store.save_analysis("s-1", result_with(80)))


def test_history_for_unknown_session_is_empty(memory_store):
    assert asyncio.run(memory_store.get_history("never-seen")) == []
    assert asyncio.run(memory_store.get_history("")) == []


def test_history_limit_is_clamped(memory_store):
    async def scenario():
        for i in range(12):
            await memory_store.save_analysis("s-1", result_with(score=i))
        return (
            await memory_store.get_history("s-1", limit=0),
            await memory_store.get_history("s-1", limit=500),
            await memory_store.get_history("s-1"),
        )

    at_least_one, at_most_all, default = asyncio.run(scenario())

    assert [r.overall_score for r in at_least_one] == [11]
    assert len(at_most_all) == 12
    assert len(default) == 10
    assert default[-1].overall_score == 11


def test_stats_for_unknown_session_are_zero(memory_store):
    stats = asyncio.run(memory_store.get_stats("never-seen"))

    assert stats.total_analyses == 0
    assert stats.average_score == 0
    assert stats.security_issues_found == 0


def test_stats_sum_issue_counts_over_history(memory_store):
    async def scenario():
        await memory_store.save_analysis("s-1", result_with(70, security=2, performance=1))
        await memory_store.save_analysis("s-1", result_with(90, quality=3))
        return await memory_store.get_stats("s-1")

    stats = asyncio.run(scenario())

    assert stats.security_issues_found == 2
    assert stats.performance_issues_found == 1
    assert stats.quality_issues_found == 3
    assert stats.average_score == 80


def test_cleanup_zero_removes_sessions_with_any_idle_time(memory_store, clock):
    async def scenario():
        await memory_store.get_or_create_session("old")
        clock.advance(1)
        await memory_store.get_or_create_session("fresh")
        removed = await memory_store.cleanup(0)
        return removed, await memory_store.get_stats("old"), await memory_store.get_stats("fresh")

    removed, old_stats, fresh_stats = asyncio.run(scenario())

    assert removed == 1
    assert old_stats.created_at == 0
    assert fresh_stats.created_at != 0


def test_cleanup_on_empty_store_returns_zero(memory_store):
    assert asyncio.run(memory_store.cleanup(0)) == 0
    assert memory_store.backend.save_count == 0


def test_cleanup_default_age_is_seven_days(memory_store, clock):
    week_ms = 7 * 24 * 60 * 60 * 1000

    async def scenario():
        await memory_store.get_or_create_session("s-1")
        clock.advance(week_ms)
        kept = await memory_store.cleanup()
        clock.advance(1)
        removed = await memory_store.cleanup()
        return kept, removed

    assert asyncio.run(scenario()) == (0, 1)


def test_cleanup_rejects_negative_age(memory_store):
    with pytest.raises(InvalidInput):
        asyncio.run(memory_store.cleanup(-1))


def test_cleanup_persistence_failure_raises(clock):
    backend = InMemorySnapshotBackend()
    store = SessionStore(backend, clock=clock)
    asyncio.run(store.get_or_create_session("s-1"))
    clock.advance(10)
    backend.save = FailingBackend().save

    with pytest.raises(StorageFailure):
        asyncio.run(store.cleanup(0))


def test_snapshot_survives_restart(clock):
    backend = InMemorySnapshotBackend()

    async def first_run():
        store = SessionStore(backend, clock=clock)
        await store.init()
        await store.save_analysis("s-1", result_with(60, security=1))
        await store.shutdown()

    async def second_run():
        store = SessionStore(backend, clock=clock)
        await store.init()
        return await store.get_history("s-1"), await store.get_stats("s-1")

    asyncio.run(first_run())
    history, stats = asyncio.run(second_run())

    assert len(history) == 1
    assert history[0].security_issues[0].severity == "high"
    assert stats.total_analyses == 1
    assert stats.average_score == 60


def test_init_with_unreadable_snapshot_starts_empty(clock):
    store = SessionStore(FailingBackend(fail_load=True), clock=clock)

    asyncio.run(store.init())

    assert asyncio.run(store.get_history("s-1")) == []


def test_init_skips_malformed_sessions(clock):
    good = {
        "id": "good",
        "createdAt": 1,
        "lastActivity": 1,
        "analyses": [],
        "totalAnalyses": 0,
        "scoreTotal": 0,
        "averageScore": 0,
    }
    backend = InMemorySnapshotBackend({"good": good, "bad": {"id": "bad"}})
    store = SessionStore(backend, clock=clock)

    asyncio.run(store.init())

    assert asyncio.run(store.get_stats("good")).created_at == 1
    assert asyncio.run(store.get_stats("bad")).created_at == 0


def test_shutdown_swallows_storage_failure(failing_store):
    asyncio.run(failing_store.init())
    asyncio.run(failing_store.shutdown())


def test_concurrent_saves_are_not_lost(memory_store):
    async def scenario():
        await asyncio.gather(
            memory_store.save_analysis("s-1", result_with(40)),
            memory_store.save_analysis("s-1", result_with(60)),
            *(memory_store.save_analysis("s-1", result_with(50)) for _ in range(8)),
        )
        return await memory_store.get_stats("s-1")

    stats = asyncio.run(scenario())

    assert stats.total_analyses == 10
    assert stats.average_score == 50
