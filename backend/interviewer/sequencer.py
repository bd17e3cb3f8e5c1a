from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from interviewer.models import InterviewSession, SessionStatus, Template
from interviewer.question_generator import DynamicQuestionGenerator, QuestionContext
from interviewer.time_budget import evaluate_time_budget

logger = logging.getLogger("interviewer.sequencer")


class SequencerState(str, Enum):
    AWAITING_START = "awaiting_start"
    DELIVERING_TEMPLATE = "delivering_template"
    DELIVERING_DYNAMIC = "delivering_dynamic"
    CONCLUDING = "concluding"
    CONCLUDED = "concluded"


class UtteranceKind(str, Enum):
    TEMPLATE_QUESTION = "template_question"
    DYNAMIC_QUESTION = "dynamic_question"
    CLOSING_REMARKS = "closing_remarks"


@dataclass(frozen=True)
class SequencerDecision:
    kind: UtteranceKind
    content: str
    state: SequencerState
    reason: str = ""

    @property
    def concludes(self) -> bool:
        return self.kind == UtteranceKind.CLOSING_REMARKS


def current_state(session: InterviewSession, template: Template) -> SequencerState:
    if session.concluded:
        return SequencerState.CONCLUDED
    if session.status == SessionStatus.SCHEDULED or session.started_at is None:
        return SequencerState.AWAITING_START
    if session.current_question_index < len(template.questions):
        return SequencerState.DELIVERING_TEMPLATE
    return SequencerState.DELIVERING_DYNAMIC


def closing_remarks(session: InterviewSession | None = None) -> str:
    name = (session.candidate_name if session else "") or ""
    position = (session.position if session else "") or ""
    greeting = f"Thank you, {name}, for" if name else "Thank you for"
    role = f"the {position} position" if position else "this position"
    return (
        f"{greeting} taking the time to interview for {role}. "
        "You've provided some great insights today. Our team will review your responses "
        "and we'll be in touch within the next few business days with next steps. "
        "Thank you again, and have a wonderful day!"
    )


def _closing(session: InterviewSession, reason: str) -> SequencerDecision:
    return SequencerDecision(
        kind=UtteranceKind.CLOSING_REMARKS,
        content=closing_remarks(session),
        state=SequencerState.CONCLUDED,
        reason=reason,
    )


async def decide_next_utterance(
    session: InterviewSession,
    template: Template,
    now: datetime,
    generator: DynamicQuestionGenerator | None,
) -> SequencerDecision:
    """
    Pick what the interviewer says on this assistant turn.

    Order of precedence: conclusion (already concluded or time budget due),
    template question at the current index, dynamic question while enough
    time remains, closing remarks. Any fault degrades to closing remarks.
    """
    try:
        return await _decide(session, template, now, generator)
    except Exception:
        logger.exception("sequencer fault | call_id=%s", session.call_id)
        return _closing(session, "fault")


async def _decide(
    session: InterviewSession,
    template: Template,
    now: datetime,
    generator: DynamicQuestionGenerator | None,
) -> SequencerDecision:
    state = current_state(session, template)
    if state == SequencerState.CONCLUDED:
        return _closing(session, "already_concluded")

    budget = evaluate_time_budget(session.started_at, now, template.duration_minutes)
    if budget.conclusion_due:
        return _closing(session, "time_budget")

    index = session.current_question_index
    if index < len(template.questions):
        return SequencerDecision(
            kind=UtteranceKind.TEMPLATE_QUESTION,
            content=template.questions[index].text,
            state=SequencerState.DELIVERING_TEMPLATE,
            reason=f"template_{index + 1}_of_{len(template.questions)}",
        )

    if budget.dynamic_allowed and generator is not None:
        question = await generator.generate(QuestionContext.from_session(session, template))
        if question:
            return SequencerDecision(
                kind=UtteranceKind.DYNAMIC_QUESTION,
                content=question,
                state=SequencerState.DELIVERING_DYNAMIC,
                reason="dynamic_generated",
            )
        return _closing(session, "dynamic_unavailable")

    return _closing(session, "questions_exhausted")
