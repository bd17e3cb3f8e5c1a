from __future__ import annotations

import logging
from datetime import datetime
from typing import Awaitable, Callable

from core.logger import log_event
from interviewer.analysis import AnalysisIngestionPipeline
from interviewer.errors import MalformedEventError, SessionNotFoundError
from interviewer.events import (
    ArtifactReceived,
    AssistantRequested,
    CallEnded,
    CallStarted,
    EventKind,
    TranscriptReceived,
    UnknownEvent,
    WebhookEvent,
    parse_event,
)
from interviewer.models import InterviewSession, SessionStatus, utcnow
from interviewer.notifications import NotificationService, NotificationType, notify_safely
from interviewer.question_generator import DynamicQuestionGenerator
from interviewer.sequencer import SequencerDecision, UtteranceKind, closing_remarks, decide_next_utterance
from interviewer.session_store import SessionStore
from interviewer.transcript import TranscriptAggregator

logger = logging.getLogger("interviewer.router")

CONTINUATION_UTTERANCE = "Thank you. Let's continue with the interview."

Response = dict | None
Handler = Callable[..., Awaitable[Response]]


class WebhookEventRouter:
    """
    Entry point for platform events. Every event gets an answer: assistant
    requests always receive an utterance, everything else answers None.
    """

    def __init__(
        self,
        store: SessionStore,
        generator: DynamicQuestionGenerator | None,
        pipeline: AnalysisIngestionPipeline,
        notifier: NotificationService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.generator = generator
        self.pipeline = pipeline
        self.notifier = notifier
        self.clock = clock
        self.aggregator = TranscriptAggregator(store)

        self._handlers: dict[EventKind, Handler] = {
            EventKind.CALL_START: self._on_call_start,
            EventKind.TRANSCRIPT: self._on_transcript,
            EventKind.ASSISTANT_REQUEST: self._on_assistant_request,
            EventKind.CALL_END: self._on_call_end,
            EventKind.END_OF_CALL_REPORT: self._on_call_end,
            EventKind.ARTIFACT: self._on_artifact,
        }
        missing = set(EventKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"no handler for event kinds: {sorted(k.value for k in missing)}")

    async def handle(self, payload: dict) -> Response:
        try:
            event = parse_event(payload, received_at=self.clock())
        except MalformedEventError as exc:
            call_id = payload.get("callId") if isinstance(payload, dict) else ""
            log_event("router", "malformed_event", call_id, level=logging.WARNING, kind=exc.kind, error=str(exc))
            if exc.kind == EventKind.ASSISTANT_REQUEST.value:
                return {"content": CONTINUATION_UTTERANCE}
            return None
        return await self.dispatch(event)

    async def dispatch(self, event: WebhookEvent) -> Response:
        if isinstance(event, UnknownEvent):
            logger.info("unhandled event kind | kind=%s call_id=%s", event.kind, event.call_id)
            return None

        handler = self._handlers[event.kind]
        try:
            return await handler(event)
        except Exception:
            logger.exception("event handler failed | kind=%s call_id=%s", event.kind.value, event.call_id)
            if event.kind == EventKind.ASSISTANT_REQUEST:
                return {"content": CONTINUATION_UTTERANCE}
            return None

    # ---------- CALL START ----------

    async def _on_call_start(self, event: CallStarted) -> Response:
        session = await self.store.get_by_call_id(event.call_id)
        if session is None:
            logger.warning("call-start for unknown session | call_id=%s", event.call_id)
            return None

        def _start(current: InterviewSession) -> bool:
            # redelivery to an active or finished session changes nothing
            if current.status != SessionStatus.SCHEDULED:
                return False
            current.status = SessionStatus.IN_PROGRESS
            if current.started_at is None:
                current.started_at = event.started_at
            if event.assistant_id:
                current.assistant_id = event.assistant_id
            # the index is not rewound: transcripts delivered ahead of call-start already count
            return True

        result = await self.store.update(session.session_id, _start)
        log_event("router", "call_started", event.call_id, changed=result.changed, status=result.session.status.value)
        if result.changed:
            await notify_safely(
                self.notifier,
                target_id=result.session.interviewer_id,
                type=NotificationType.INTERVIEW_STARTED,
                message=f"Interview with {result.session.candidate_name or 'the candidate'} has started.",
                link=f"/interviews/{result.session.session_id}",
            )
        return None

    # ---------- TRANSCRIPT ----------

    async def _on_transcript(self, event: TranscriptReceived) -> Response:
        await self.aggregator.append(event.call_id, event.message)
        return None

    # ---------- ASSISTANT REQUEST ----------

    async def _on_assistant_request(self, event: AssistantRequested) -> Response:
        found = await self.store.get_with_template(event.call_id)
        if found is None:
            logger.warning("assistant-request for unknown session | call_id=%s", event.call_id)
            return {"content": CONTINUATION_UTTERANCE}

        session, template = found
        if session.is_terminal:
            return {"content": closing_remarks(session)}

        decision = await decide_next_utterance(session, template, self.clock(), self.generator)
        await self._record_decision(session, decision)

        log_event(
            "sequencer",
            "utterance_selected",
            event.call_id,
            kind=decision.kind.value,
            state=decision.state.value,
            reason=decision.reason,
            question_index=session.current_question_index,
            utterance=decision.content,
        )
        return {"content": decision.content}

    async def _record_decision(self, session: InterviewSession, decision: SequencerDecision) -> None:
        if decision.kind == UtteranceKind.TEMPLATE_QUESTION:
            return

        def _apply(current: InterviewSession) -> bool:
            if current.is_terminal:
                return False
            if decision.kind == UtteranceKind.DYNAMIC_QUESTION:
                current.dynamic_questions.append(decision.content)
                return True
            if not current.concluded:
                current.concluded = True
                return True
            return False

        try:
            await self.store.update(session.session_id, _apply)
        except Exception as exc:
            # the utterance is still spoken; only its bookkeeping is lost
            logger.warning("failed to record sequencer decision | call_id=%s err=%s", session.call_id, exc)

    # ---------- CALL END / END OF CALL REPORT ----------

    async def _on_call_end(self, event: CallEnded) -> Response:
        session = await self.store.get_by_call_id(event.call_id)
        if session is None:
            logger.warning("%s for unknown session | call_id=%s", event.kind.value, event.call_id)
            return None

        def _seal(current: InterviewSession) -> bool:
            if current.is_terminal:
                return False
            current.status = SessionStatus.COMPLETED
            if current.completed_at is None:
                current.completed_at = event.ended_at
            if event.cost is not None:
                current.cost = event.cost
            started = event.started_at or current.started_at
            if started is not None:
                current.duration_minutes = round((event.ended_at - started).total_seconds() / 60)
            return True

        try:
            result = await self.store.update(session.session_id, _seal)
        except SessionNotFoundError:
            logger.warning("session vanished before seal | call_id=%s", event.call_id)
            return None

        log_event("router", "call_ended", event.call_id, kind=event.kind.value, changed=result.changed)
        if result.changed:
            await notify_safely(
                self.notifier,
                target_id=result.session.interviewer_id,
                type=NotificationType.INTERVIEW_COMPLETED,
                message=f"Interview with {result.session.candidate_name or 'the candidate'} has been completed.",
                link=f"/interviews/{result.session.session_id}",
            )

        saved = await self.pipeline.ingest(session.session_id, event.report, completed_at=event.ended_at)
        log_event("router", "analysis_ingested", event.call_id, saved=saved)
        return None

    # ---------- ARTIFACT ----------

    async def _on_artifact(self, event: ArtifactReceived) -> Response:
        session = await self.store.get_by_call_id(event.call_id)
        if session is None:
            logger.warning("artifact for unknown session | call_id=%s", event.call_id)
            return None

        saved = await self.pipeline.ingest(session.session_id, event.report, completed_at=event.received_at)
        log_event("router", "artifact_ingested", event.call_id, artifact_type=event.artifact_type, saved=saved)
        return None
