from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class MessageRole(str, Enum):
    INTERVIEWER = "interviewer"
    CANDIDATE = "candidate"
    SYSTEM = "system"


class HiringRecommendation(str, Enum):
    STRONG_YES = "StrongYes"
    YES = "Yes"
    MAYBE = "Maybe"
    NO = "No"


_ROLE_ALIASES = {
    "interviewer": MessageRole.INTERVIEWER,
    "assistant": MessageRole.INTERVIEWER,
    "bot": MessageRole.INTERVIEWER,
    "candidate": MessageRole.CANDIDATE,
    "user": MessageRole.CANDIDATE,
    "customer": MessageRole.CANDIDATE,
    "system": MessageRole.SYSTEM,
}


def normalize_role(value: Any) -> MessageRole:
    return _ROLE_ALIASES.get(str(value or "").strip().lower(), MessageRole.SYSTEM)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt_from_str(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


# ---------- TEMPLATE ----------

@dataclass(frozen=True)
class QuestionSpec:
    text: str
    category: str | None = None
    weight: float | None = None


def _parse_question(raw: Any) -> QuestionSpec | None:
    if isinstance(raw, str):
        text = raw.strip()
        return QuestionSpec(text=text) if text else None
    if not isinstance(raw, dict):
        return None

    # newer templates store {title, points}, older ones {text, weight}
    text = str(raw.get("title") or raw.get("text") or "").strip()
    if not text:
        return None
    weight = raw.get("points", raw.get("weight"))
    try:
        weight = float(weight) if weight is not None else None
    except (TypeError, ValueError):
        weight = None
    return QuestionSpec(text=text, category=raw.get("category"), weight=weight)


def parse_template_questions(raw: Any) -> tuple[QuestionSpec, ...]:
    if isinstance(raw, dict):
        raw = raw.get("questions")
    if not isinstance(raw, (list, tuple)):
        return ()
    parsed = (_parse_question(item) for item in raw)
    return tuple(q for q in parsed if q is not None)


@dataclass(frozen=True)
class Template:
    template_id: str
    questions: tuple[QuestionSpec, ...] = ()
    duration_minutes: float = 0.0
    instructions: str = ""
    title: str = ""
    description: str = ""
    category: str = ""
    difficulty: str = ""
    tags: tuple[str, ...] = ()

    @classmethod
    def from_record(cls, record: dict) -> "Template":
        try:
            duration = float(record.get("duration_minutes", record.get("duration")) or 0.0)
        except (TypeError, ValueError):
            duration = 0.0
        return cls(
            template_id=str(record.get("template_id") or record.get("id") or ""),
            questions=parse_template_questions(record.get("questions")),
            duration_minutes=duration,
            instructions=str(record.get("instructions") or record.get("instruction") or ""),
            title=str(record.get("title") or ""),
            description=str(record.get("description") or ""),
            category=str(record.get("category") or ""),
            difficulty=str(record.get("difficulty") or ""),
            tags=tuple(str(t) for t in (record.get("tags") or [])),
        )

    def to_record(self) -> dict:
        return {
            "template_id": self.template_id,
            "questions": [
                {"text": q.text, "category": q.category, "weight": q.weight}
                for q in self.questions
            ],
            "duration_minutes": self.duration_minutes,
            "instructions": self.instructions,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "difficulty": self.difficulty,
            "tags": list(self.tags),
        }


# ---------- TRANSCRIPT ----------

@dataclass(frozen=True)
class TranscriptMessage:
    role: MessageRole
    content: str
    time: float | None = None
    seconds_from_start: float | None = None
    received_at: datetime | None = None

    @property
    def dedup_key(self) -> str:
        stamp = self.time if self.time is not None else self.seconds_from_start
        return f"{self.role.value}|{stamp}|{self.content.strip()}"

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "content": self.content,
            "time": self.time,
            "seconds_from_start": self.seconds_from_start,
            "received_at": _dt_to_str(self.received_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TranscriptMessage":
        return cls(
            role=normalize_role(data.get("role")),
            content=str(data.get("content") or ""),
            time=data.get("time"),
            seconds_from_start=data.get("seconds_from_start"),
            received_at=_dt_from_str(data.get("received_at")),
        )


# ---------- ANALYSIS ----------

@dataclass
class AnalysisArtifact:
    """Normalized post-call analysis. Fields left as None were absent upstream."""

    overall_score: float | None = None
    category_scores: dict[str, float] | None = None
    strengths: list[str] | None = None
    areas_for_improvement: list[str] | None = None
    key_insights: list[str] | None = None
    hiring_recommendation: HiringRecommendation | None = None
    question_responses: list[dict] | None = None
    interview_metrics: dict[str, float] | None = None
    feedback: str | None = None
    summary: str | None = None
    transcript: str | None = None
    recording_url: str | None = None

    # transcript/recording alone do not make an analysis
    _EVALUATION_FIELDS = (
        "overall_score",
        "category_scores",
        "strengths",
        "areas_for_improvement",
        "key_insights",
        "hiring_recommendation",
        "question_responses",
        "interview_metrics",
        "feedback",
        "summary",
    )

    def has_evaluation(self) -> bool:
        return any(getattr(self, name) not in (None, "", [], {}) for name in self._EVALUATION_FIELDS)

    def has_recording(self) -> bool:
        return bool(self.transcript or self.recording_url)

    def fill_missing(self, other: "AnalysisArtifact") -> bool:
        """Copy fields from other that are still empty here. Fields already set are never replaced."""
        changed = False
        for f in fields(self):
            if getattr(self, f.name) in (None, "", [], {}):
                incoming = getattr(other, f.name)
                if incoming not in (None, "", [], {}):
                    setattr(self, f.name, incoming)
                    changed = True
        return changed

    def to_dict(self) -> dict:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, HiringRecommendation):
                value = value.value
            data[f.name] = value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisArtifact":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in (data or {}).items() if k in known}
        if kwargs.get("hiring_recommendation"):
            kwargs["hiring_recommendation"] = HiringRecommendation(kwargs["hiring_recommendation"])
        return cls(**kwargs)


# ---------- SESSION ----------

@dataclass
class InterviewSession:
    session_id: str
    call_id: str = ""
    template_id: str = ""
    status: SessionStatus = SessionStatus.SCHEDULED
    candidate_name: str = ""
    candidate_email: str = ""
    position: str = ""
    interviewer_id: str = ""
    assistant_id: str = ""
    current_question_index: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    messages: list[TranscriptMessage] = field(default_factory=list)
    seen_message_keys: set[str] = field(default_factory=set)
    dynamic_questions: list[str] = field(default_factory=list)
    concluded: bool = False
    cost: float | None = None
    duration_minutes: int | None = None
    analysis: AnalysisArtifact | None = None
    analyzed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "call_id": self.call_id,
            "template_id": self.template_id,
            "status": self.status.value,
            "candidate_name": self.candidate_name,
            "candidate_email": self.candidate_email,
            "position": self.position,
            "interviewer_id": self.interviewer_id,
            "assistant_id": self.assistant_id,
            "current_question_index": self.current_question_index,
            "started_at": _dt_to_str(self.started_at),
            "completed_at": _dt_to_str(self.completed_at),
            "messages": [m.to_dict() for m in self.messages],
            "seen_message_keys": sorted(self.seen_message_keys),
            "dynamic_questions": list(self.dynamic_questions),
            "concluded": self.concluded,
            "cost": self.cost,
            "duration_minutes": self.duration_minutes,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "analyzed_at": _dt_to_str(self.analyzed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InterviewSession":
        analysis = data.get("analysis")
        return cls(
            session_id=str(data.get("session_id") or ""),
            call_id=str(data.get("call_id") or ""),
            template_id=str(data.get("template_id") or ""),
            status=SessionStatus(data.get("status") or SessionStatus.SCHEDULED.value),
            candidate_name=str(data.get("candidate_name") or ""),
            candidate_email=str(data.get("candidate_email") or ""),
            position=str(data.get("position") or ""),
            interviewer_id=str(data.get("interviewer_id") or ""),
            assistant_id=str(data.get("assistant_id") or ""),
            current_question_index=int(data.get("current_question_index") or 0),
            started_at=_dt_from_str(data.get("started_at")),
            completed_at=_dt_from_str(data.get("completed_at")),
            messages=[TranscriptMessage.from_dict(m) for m in data.get("messages") or []],
            seen_message_keys=set(data.get("seen_message_keys") or []),
            dynamic_questions=list(data.get("dynamic_questions") or []),
            concluded=bool(data.get("concluded")),
            cost=data.get("cost"),
            duration_minutes=data.get("duration_minutes"),
            analysis=AnalysisArtifact.from_dict(analysis) if isinstance(analysis, dict) else None,
            analyzed_at=_dt_from_str(data.get("analyzed_at")),
        )
