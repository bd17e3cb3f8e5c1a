import asyncio

import pytest

from conftest import make_session
from interviewer.models import MessageRole, SessionStatus, TranscriptMessage
from interviewer.transcript import TranscriptAggregator, apply_transcript_message


def _msg(content, role=MessageRole.CANDIDATE, time=1.0):
    return TranscriptMessage(role=role, content=content, time=time, seconds_from_start=time)


def test_candidate_answer_advances_by_exactly_one():
    session = make_session(status=SessionStatus.IN_PROGRESS)
    outcome = apply_transcript_message(session, _msg("I led the migration to Postgres."), template_length=2)
    assert outcome.appended and outcome.advanced
    assert session.current_question_index == 1
    assert len(session.messages) == 1


@pytest.mark.parametrize(
    "message",
    [
        _msg("Yes, sure."),
        _msg("           ok            "),
        _msg("Great, let's begin with your background.", role=MessageRole.INTERVIEWER),
        _msg("Call recording started for compliance.", role=MessageRole.SYSTEM),
    ],
)
def test_short_or_non_candidate_messages_are_logged_without_advancing(message):
    session = make_session(status=SessionStatus.IN_PROGRESS)
    outcome = apply_transcript_message(session, message, template_length=2)
    assert outcome.appended is True
    assert outcome.advanced is False
    assert session.current_question_index == 0


def test_redelivered_message_is_ignored():
    session = make_session(status=SessionStatus.IN_PROGRESS)
    message = _msg("I built the billing reconciliation job.", time=42.0)
    apply_transcript_message(session, message, template_length=5)
    outcome = apply_transcript_message(session, message, template_length=5)
    assert outcome.reason == "duplicate"
    assert session.current_question_index == 1
    assert len(session.messages) == 1


def test_same_text_at_a_different_time_counts_again():
    session = make_session(status=SessionStatus.IN_PROGRESS)
    apply_transcript_message(session, _msg("I would add a retry queue there.", time=10.0), template_length=5)
    apply_transcript_message(session, _msg("I would add a retry queue there.", time=50.0), template_length=5)
    assert session.current_question_index == 2


def test_index_is_capped_by_questions_asked():
    session = make_session(status=SessionStatus.IN_PROGRESS, current_question_index=2)
    outcome = apply_transcript_message(session, _msg("Another long answer from the candidate."), template_length=2)
    assert outcome.advanced is False
    assert outcome.reason == "index_capped"

    session.dynamic_questions.append("What would you change in hindsight?")
    outcome = apply_transcript_message(session, _msg("I would split the monolith sooner.", time=2.0), template_length=2)
    assert outcome.advanced is True
    assert session.current_question_index == 3


def test_completed_session_is_not_mutated():
    session = make_session(status=SessionStatus.COMPLETED, current_question_index=1)
    outcome = apply_transcript_message(session, _msg("A late answer after hang up."), template_length=5)
    assert outcome.appended is False
    assert session.messages == []
    assert session.current_question_index == 1


@pytest.mark.asyncio
async def test_aggregator_persists_through_store(seeded_store):
    aggregator = TranscriptAggregator(seeded_store)
    outcome = await aggregator.append("call-1", _msg("I mostly work on data pipelines."))
    assert outcome.advanced

    stored = await seeded_store.get_by_call_id("call-1")
    assert stored.current_question_index == 1
    assert stored.messages[0].content == "I mostly work on data pipelines."


@pytest.mark.asyncio
async def test_aggregator_unknown_call_is_ignored(seeded_store):
    assert await TranscriptAggregator(seeded_store).append("nope", _msg("Hello there, anyone home?")) is None


@pytest.mark.asyncio
async def test_concurrent_deliveries_do_not_lose_updates(seeded_store):
    aggregator = TranscriptAggregator(seeded_store)
    messages = [_msg(f"Distinct candidate answer {i}", time=float(i)) for i in range(2)]
    messages += [_msg(f"Interviewer remark number {i}", role=MessageRole.INTERVIEWER, time=float(i)) for i in range(8)]

    await asyncio.gather(*(aggregator.append("call-1", m) for m in messages))

    stored = await seeded_store.get_by_call_id("call-1")
    assert len(stored.messages) == 10
    assert stored.current_question_index == 2
