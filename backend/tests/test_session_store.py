import asyncio
import gc

import fakeredis
import pytest
import pytest_asyncio

from conftest import T0, make_session, make_template
from interviewer.errors import PersistenceError, SessionNotFoundError
from interviewer.models import AnalysisArtifact, HiringRecommendation, SessionStatus
from interviewer.session_store import LocalSessionStore, RedisSessionStore, apply_analysis, build_session_store


@pytest.mark.asyncio
async def test_get_with_template_joins_session_and_template(seeded_store):
    session, template = await seeded_store.get_with_template("call-1")
    assert session.call_id == "call-1"
    assert template.template_id == "tpl-1"
    assert len(template.questions) == 2


@pytest.mark.asyncio
async def test_unknown_call_id_returns_none(seeded_store):
    assert await seeded_store.get_by_call_id("missing") is None
    assert await seeded_store.get_by_call_id("") is None
    assert await seeded_store.get_with_template("missing") is None


@pytest.mark.asyncio
async def test_reads_are_copies(seeded_store):
    session = await seeded_store.get_by_call_id("call-1")
    session.current_question_index = 99
    again = await seeded_store.get_by_call_id("call-1")
    assert again.current_question_index == 0


@pytest.mark.asyncio
async def test_update_applies_and_reports_change(seeded_store):
    def _start(session):
        session.status = SessionStatus.IN_PROGRESS
        return True

    result = await seeded_store.update("sess-call-1", _start)
    assert result.changed is True
    assert (await seeded_store.get_by_call_id("call-1")).status == SessionStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_update_returning_false_discards_mutation(seeded_store):
    def _peek(session):
        session.current_question_index = 5
        return False

    result = await seeded_store.update("sess-call-1", _peek)
    assert result.changed is False
    assert (await seeded_store.get_by_call_id("call-1")).current_question_index == 0


@pytest.mark.asyncio
async def test_update_missing_session_raises(seeded_store):
    with pytest.raises(SessionNotFoundError):
        await seeded_store.update("sess-nope", lambda s: True)


@pytest.mark.asyncio
async def test_failing_mutation_raises_persistence_error_and_keeps_state(seeded_store):
    def _explode(session):
        session.current_question_index = 4
        raise ValueError("bad mutation")

    with pytest.raises(PersistenceError):
        await seeded_store.update("sess-call-1", _explode)
    assert (await seeded_store.get_by_call_id("call-1")).current_question_index == 0


@pytest.mark.asyncio
async def test_concurrent_updates_serialize(seeded_store):
    def _bump(session):
        session.current_question_index += 1
        return True

    async def _bump_with_yield():
        await asyncio.sleep(0)
        return await seeded_store.update("sess-call-1", _bump)

    await asyncio.gather(*(_bump_with_yield() for _ in range(25)))
    assert (await seeded_store.get_by_call_id("call-1")).current_question_index == 25


@pytest.mark.asyncio
async def test_upsert_analysis_never_replaces_saved_fields(seeded_store):
    first = AnalysisArtifact(overall_score=85, summary="Strong systems thinking.")
    second = AnalysisArtifact(overall_score=10, summary="Replayed report.")

    result = await seeded_store.upsert_analysis("sess-call-1", first, completed_at=T0)
    assert result.changed is True
    assert result.first_evaluation is True

    replay = await seeded_store.upsert_analysis("sess-call-1", second, completed_at=T0)
    assert replay.changed is False
    assert replay.first_evaluation is False

    stored = await seeded_store.get_by_call_id("call-1")
    assert stored.analysis.overall_score == 85
    assert stored.status == SessionStatus.COMPLETED
    assert stored.completed_at == T0
    assert stored.analyzed_at == T0


def test_apply_analysis_keeps_existing_completion_time():
    sealed_at = T0.replace(hour=8)
    session = make_session(status=SessionStatus.COMPLETED, completed_at=sealed_at)
    assert apply_analysis(session, AnalysisArtifact(overall_score=70), T0) is True
    assert session.completed_at == sealed_at
    assert session.analyzed_at == T0


def test_build_session_store_defaults_to_local():
    assert isinstance(build_session_store(), LocalSessionStore)


def test_build_session_store_requires_redis_url(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("USE_REDIS_SESSION_STORE", "true")
    monkeypatch.delenv("REDIS_URL", raising=False)
    with pytest.raises(RuntimeError):
        build_session_store()


@pytest.mark.asyncio
async def test_later_fragments_fill_only_empty_fields(seeded_store):
    recording = AnalysisArtifact(transcript="AI: Hi\nUser: Hello", recording_url="https://rec/1.wav")
    result = await seeded_store.upsert_analysis("sess-call-1", recording, completed_at=T0)
    assert result.changed is True
    assert result.first_evaluation is False
    assert result.session.analyzed_at is None

    later = T0.replace(minute=20)
    evaluation = AnalysisArtifact(overall_score=64, summary="Solid.", recording_url="https://rec/other.wav")
    result = await seeded_store.upsert_analysis("sess-call-1", evaluation, completed_at=later)
    assert result.changed is True
    assert result.first_evaluation is True

    stored = await seeded_store.get_by_call_id("call-1")
    assert stored.analysis.recording_url == "https://rec/1.wav"
    assert stored.analysis.overall_score == 64
    assert stored.analysis.summary == "Solid."
    assert stored.completed_at == T0
    assert stored.analyzed_at == later


def test_fill_missing_treats_empty_values_as_missing():
    saved = AnalysisArtifact(overall_score=0, summary="", strengths=[], category_scores={})
    incoming = AnalysisArtifact(
        overall_score=90,
        summary="Thoughtful.",
        strengths=["tracing"],
        category_scores={"communication": 8},
        hiring_recommendation=HiringRecommendation.YES,
    )
    assert saved.fill_missing(incoming) is True
    assert saved.overall_score == 0
    assert saved.summary == "Thoughtful."
    assert saved.strengths == ["tracing"]
    assert saved.category_scores == {"communication": 8}
    assert saved.fill_missing(incoming) is False


@pytest.mark.asyncio
async def test_session_locks_are_dropped_once_idle(seeded_store):
    await seeded_store.update("sess-call-1", lambda s: True)
    gc.collect()
    assert "sess-call-1" not in seeded_store._session_locks


# ---------- redis adapter against an in-process fake server ----------


@pytest_asyncio.fixture
async def redis_store(monkeypatch: pytest.MonkeyPatch):
    fake = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    monkeypatch.setattr("redis.asyncio.from_url", lambda url, **kwargs: fake)
    store = RedisSessionStore("redis://interviews.test:6379/0", max_retries=64)
    await store.save_template(make_template())
    await store.create_session(make_session())
    return store


@pytest.mark.asyncio
async def test_redis_round_trips_session_and_template(redis_store):
    session, template = await redis_store.get_with_template("call-1")
    assert session.session_id == "sess-call-1"
    assert session.status == SessionStatus.SCHEDULED
    assert template == make_template()
    assert await redis_store.get_by_call_id("missing") is None


@pytest.mark.asyncio
async def test_redis_concurrent_updates_all_land(redis_store):
    def _bump(session):
        session.current_question_index += 1
        return True

    await asyncio.gather(*(redis_store.update("sess-call-1", _bump) for _ in range(20)))
    assert (await redis_store.get_by_call_id("call-1")).current_question_index == 20


@pytest.mark.asyncio
async def test_redis_update_missing_session_raises(redis_store):
    with pytest.raises(SessionNotFoundError):
        await redis_store.update("sess-nope", lambda s: True)


@pytest.mark.asyncio
async def test_redis_declined_mutation_writes_nothing(redis_store):
    def _peek(session):
        session.current_question_index = 7
        return False

    result = await redis_store.update("sess-call-1", _peek)
    assert result.changed is False
    assert (await redis_store.get_by_call_id("call-1")).current_question_index == 0


@pytest.mark.asyncio
async def test_redis_failing_mutation_raises_persistence_error(redis_store):
    def _explode(session):
        raise ValueError("bad mutation")

    with pytest.raises(PersistenceError):
        await redis_store.update("sess-call-1", _explode)


@pytest.mark.asyncio
async def test_redis_upsert_analysis_never_replaces_saved_fields(redis_store):
    first = await redis_store.upsert_analysis(
        "sess-call-1", AnalysisArtifact(overall_score=85, summary="Strong systems thinking."), completed_at=T0
    )
    replay = await redis_store.upsert_analysis(
        "sess-call-1", AnalysisArtifact(overall_score=10, summary="Replayed report."), completed_at=T0
    )

    assert first.changed is True and first.first_evaluation is True
    assert replay.changed is False and replay.first_evaluation is False

    stored = await redis_store.get_by_call_id("call-1")
    assert stored.analysis.overall_score == 85
    assert stored.analysis.summary == "Strong systems thinking."
    assert stored.status == SessionStatus.COMPLETED
    assert stored.completed_at == T0
