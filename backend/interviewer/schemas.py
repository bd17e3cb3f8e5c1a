from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, ValidatorFunctionWrapHandler, field_validator

Timestamp = str | float | int | None


def _none_if_invalid(value: Any, handler: ValidatorFunctionWrapHandler) -> Any:
    # a badly typed side field costs that field, not the whole event
    try:
        return handler(value)
    except ValidationError:
        return None


def _id_text(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class CallInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    assistantId: str | None = None
    status: str | None = None
    startedAt: Timestamp = None
    endedAt: Timestamp = None
    cost: float | None = None

    _coerce_ids = field_validator("id", "assistantId", mode="before")(_id_text)
    _lenient = field_validator("assistantId", "status", "startedAt", "endedAt", "cost", mode="wrap")(_none_if_invalid)


class MessageIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str | None = None
    role: str | None = None
    content: str | None = None
    transcript: str | None = None
    time: Timestamp = None
    endTime: float | None = None
    secondsFromStart: float | None = None
    analysis: dict | None = None

    _lenient = field_validator(
        "type", "role", "content", "transcript", "time", "endTime", "secondsFromStart", "analysis", mode="wrap"
    )(_none_if_invalid)


class WebhookEnvelope(BaseModel):
    """Inbound platform event. Accepts the flat shape and the nested `call` shape."""

    model_config = ConfigDict(extra="allow")

    kind: str | None = None
    type: str | None = None
    callId: str | None = None
    assistantId: str | None = None
    startedAt: Timestamp = None
    endedAt: Timestamp = None
    cost: float | None = None
    call: CallInfo | None = None
    message: MessageIn | None = None
    analysisPayload: dict | None = None
    analysis: dict | None = None
    artifact: dict | None = None
    timestamp: Timestamp = None

    _coerce_ids = field_validator("callId", "assistantId", mode="before")(_id_text)
    _lenient = field_validator(
        "assistantId", "startedAt", "endedAt", "cost", "analysisPayload", "analysis", "artifact", "timestamp",
        mode="wrap",
    )(_none_if_invalid)

    def event_kind(self) -> str:
        return str(self.kind or self.type or "").strip().lower()

    def call_id(self) -> str:
        return str(self.callId or (self.call.id if self.call else "") or "").strip()


class DevSessionSeed(BaseModel):
    call_id: str
    candidate_name: str = "Unknown Candidate"
    candidate_email: str = ""
    position: str = "Unknown Position"
    interviewer_id: str = ""
    template: dict
