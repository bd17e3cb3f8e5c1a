from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from core.config import CONTEXT_WINDOW_MESSAGES, DYNAMIC_QUESTION_TIMEOUT_SEC
from interviewer.llm import CompletionClient
from interviewer.models import InterviewSession, MessageRole, Template
from interviewer.prompts.dynamic_question_prompt import build_dynamic_question_prompt

logger = logging.getLogger("interviewer.question_generator")

MIN_QUESTION_LENGTH = 10


@dataclass(frozen=True)
class QuestionContext:
    role: str
    category: str = ""
    difficulty: str = ""
    instructions: str = ""
    title: str = ""
    description: str = ""
    tags: tuple[str, ...] = ()
    asked_questions: tuple[str, ...] = ()
    candidate_utterances: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_session(
        cls,
        session: InterviewSession,
        template: Template,
        window: int = CONTEXT_WINDOW_MESSAGES,
    ) -> "QuestionContext":
        recent = session.messages[-window:] if window > 0 else []
        return cls(
            role=session.position,
            category=template.category,
            difficulty=template.difficulty,
            instructions=template.instructions,
            title=template.title,
            description=template.description,
            tags=template.tags,
            asked_questions=tuple(q.text for q in template.questions) + tuple(session.dynamic_questions),
            candidate_utterances=tuple(
                m.content for m in recent if m.role == MessageRole.CANDIDATE and m.content.strip()
            ),
        )

    def as_prompt_context(self) -> dict:
        return {
            "role": self.role,
            "category": self.category,
            "difficulty": self.difficulty,
            "instructions": self.instructions,
            "title": self.title,
            "description": self.description,
            "tags": list(self.tags),
            "asked_questions": list(self.asked_questions),
            "candidate_utterances": list(self.candidate_utterances),
        }


def _clean_question(text: str) -> str:
    cleaned = str(text or "").strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in {'"', "'"}:
        cleaned = cleaned[1:-1].strip()
    return cleaned


class DynamicQuestionGenerator:
    """
    Synthesizes one follow-up question once the template is exhausted.

    Never raises: timeouts, client errors and degenerate output all resolve
    to None so the sequencer can fall back to closing remarks.
    """

    def __init__(self, completion: CompletionClient, timeout_sec: float = DYNAMIC_QUESTION_TIMEOUT_SEC):
        self.completion = completion
        self.timeout_sec = timeout_sec

    async def generate(self, context: QuestionContext) -> str | None:
        try:
            prompt = build_dynamic_question_prompt(context.as_prompt_context())
            raw = await asyncio.wait_for(self.completion.complete(prompt), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            logger.warning("dynamic question timeout | role=%s timeout=%ss", context.role, self.timeout_sec)
            return None
        except Exception as exc:
            logger.warning("dynamic question failure | role=%s err=%s", context.role, exc)
            return None

        question = _clean_question(raw)
        if len(question) <= MIN_QUESTION_LENGTH:
            logger.info("dynamic question discarded | length=%s", len(question))
            return None
        return question
