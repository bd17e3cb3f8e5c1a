from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from pydantic import ValidationError

from interviewer.errors import MalformedEventError
from interviewer.models import TranscriptMessage, normalize_role, utcnow
from interviewer.schemas import WebhookEnvelope


class EventKind(str, Enum):
    CALL_START = "call-start"
    TRANSCRIPT = "transcript"
    ASSISTANT_REQUEST = "assistant-request"
    CALL_END = "call-end"
    END_OF_CALL_REPORT = "end-of-call-report"
    ARTIFACT = "artifact"


@dataclass(frozen=True)
class CallStarted:
    call_id: str
    started_at: datetime
    assistant_id: str = ""
    kind: EventKind = EventKind.CALL_START


@dataclass(frozen=True)
class TranscriptReceived:
    call_id: str
    message: TranscriptMessage
    kind: EventKind = EventKind.TRANSCRIPT


@dataclass(frozen=True)
class AssistantRequested:
    call_id: str
    kind: EventKind = EventKind.ASSISTANT_REQUEST


@dataclass(frozen=True)
class CallEnded:
    call_id: str
    kind: EventKind
    ended_at: datetime
    started_at: datetime | None = None
    cost: float | None = None
    report: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ArtifactReceived:
    """Post-call fragment: transcript and recording, summary, success evaluation or structured data."""

    call_id: str
    artifact_type: str
    received_at: datetime
    report: dict = field(default_factory=dict)
    kind: EventKind = EventKind.ARTIFACT


@dataclass(frozen=True)
class UnknownEvent:
    kind: str
    call_id: str = ""


WebhookEvent = Union[CallStarted, TranscriptReceived, AssistantRequested, CallEnded, ArtifactReceived, UnknownEvent]


def parse_timestamp(value: Any, default: datetime | None = None) -> datetime | None:
    """ISO-8601 strings (with or without Z) and epoch milliseconds are both seen in the wild."""
    if value is None or value == "":
        return default
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return default
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _epoch_seconds(value: Any) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    parsed = parse_timestamp(value)
    return parsed.timestamp() if parsed else None


def _raw_kind(payload: dict) -> str | None:
    raw = payload.get("kind") or payload.get("type")
    if not isinstance(raw, str):
        return None
    return raw.strip().lower() or None


def parse_event(payload: Any, received_at: datetime | None = None) -> WebhookEvent:
    if not isinstance(payload, dict):
        raise MalformedEventError("event payload must be a JSON object")
    try:
        envelope = WebhookEnvelope.model_validate(payload)
    except ValidationError as exc:
        # keep the kind so an assistant request is still answered
        raise MalformedEventError(
            f"invalid event envelope: {exc.error_count()} errors", kind=_raw_kind(payload)
        ) from exc

    now = received_at or utcnow()
    raw_kind = envelope.event_kind()
    call_id = envelope.call_id()
    if not raw_kind:
        raise MalformedEventError("event kind missing")

    try:
        kind = EventKind(raw_kind)
    except ValueError:
        return UnknownEvent(kind=raw_kind, call_id=call_id)

    if not call_id:
        raise MalformedEventError("call id missing", kind=kind.value)

    call = envelope.call
    event_time = parse_timestamp(envelope.timestamp, now)

    if kind == EventKind.CALL_START:
        started = parse_timestamp(envelope.startedAt or (call.startedAt if call else None), event_time)
        return CallStarted(
            call_id=call_id,
            started_at=started,
            assistant_id=str(envelope.assistantId or (call.assistantId if call else "") or ""),
        )

    if kind == EventKind.TRANSCRIPT:
        message = envelope.message
        if message is None:
            raise MalformedEventError("transcript event without message", kind=kind.value)
        return TranscriptReceived(
            call_id=call_id,
            message=TranscriptMessage(
                role=normalize_role(message.role),
                content=str(message.content or message.transcript or ""),
                time=_epoch_seconds(message.time),
                seconds_from_start=message.secondsFromStart,
                received_at=now,
            ),
        )

    if kind == EventKind.ASSISTANT_REQUEST:
        return AssistantRequested(call_id=call_id)

    if kind == EventKind.ARTIFACT:
        artifact = envelope.artifact
        if artifact is None:
            raise MalformedEventError("artifact event without artifact", kind=kind.value)
        return ArtifactReceived(
            call_id=call_id,
            artifact_type=str(artifact.get("type") or "").strip().lower(),
            received_at=event_time,
            report=payload,
        )

    return CallEnded(
        call_id=call_id,
        kind=kind,
        ended_at=parse_timestamp(envelope.endedAt or (call.endedAt if call else None), event_time),
        started_at=parse_timestamp(envelope.startedAt or (call.startedAt if call else None)),
        cost=envelope.cost if envelope.cost is not None else (call.cost if call else None),
        report=payload,
    )
