from __future__ import annotations

import logging
from dataclasses import dataclass

from core.logger import log_event
from interviewer.models import InterviewSession, MessageRole, TranscriptMessage
from interviewer.session_store import SessionStore

logger = logging.getLogger("interviewer.transcript")

MIN_ANSWER_LENGTH = 10


@dataclass
class AppendOutcome:
    appended: bool
    advanced: bool
    question_index: int
    reason: str = ""


def is_qualifying_answer(message: TranscriptMessage) -> bool:
    return message.role == MessageRole.CANDIDATE and len(message.content.strip()) > MIN_ANSWER_LENGTH


def max_question_index(session: InterviewSession, template_length: int) -> int:
    return template_length + len(session.dynamic_questions)


def apply_transcript_message(
    session: InterviewSession,
    message: TranscriptMessage,
    template_length: int | None,
) -> AppendOutcome:
    """
    Mutates session in place. Redelivered messages (same role, timestamp and
    text) are dropped, and the index never passes the template length plus
    the dynamic questions issued so far.
    """
    if session.is_terminal:
        return AppendOutcome(False, False, session.current_question_index, "session_completed")

    key = message.dedup_key
    if key in session.seen_message_keys:
        return AppendOutcome(False, False, session.current_question_index, "duplicate")

    session.messages.append(message)
    session.seen_message_keys.add(key)

    if not is_qualifying_answer(message):
        return AppendOutcome(True, False, session.current_question_index, "not_an_answer")
    if template_length is None:
        return AppendOutcome(True, False, session.current_question_index, "template_unknown")
    if session.current_question_index >= max_question_index(session, template_length):
        return AppendOutcome(True, False, session.current_question_index, "index_capped")

    session.current_question_index += 1
    return AppendOutcome(True, True, session.current_question_index, "advanced")


class TranscriptAggregator:

    def __init__(self, store: SessionStore):
        self.store = store

    async def append(self, call_id: str, message: TranscriptMessage) -> AppendOutcome | None:
        found = await self.store.get_with_template(call_id)
        if found is not None:
            session, template = found
            template_length = len(template.questions)
        else:
            session = await self.store.get_by_call_id(call_id)
            template_length = None
        if session is None:
            logger.warning("transcript for unknown session | call_id=%s", call_id)
            return None

        outcome: AppendOutcome | None = None

        def _mutate(current: InterviewSession) -> bool:
            nonlocal outcome
            outcome = apply_transcript_message(current, message, template_length)
            return outcome.appended

        await self.store.update(session.session_id, _mutate)

        log_event(
            "transcript",
            "message_received",
            call_id,
            role=message.role.value,
            content=message.content,
            appended=outcome.appended,
            advanced=outcome.advanced,
            question_index=outcome.question_index,
            reason=outcome.reason,
        )
        return outcome
