from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime, timezone
import hashlib
import hmac
import json
import logging
import os
import uuid

from core.config import DYNAMIC_QUESTION_MODEL
from interviewer.analysis import AnalysisIngestionPipeline
from interviewer.llm import OpenAICompletionClient
from interviewer.models import InterviewSession, SessionStatus, Template
from interviewer.notifications import LocalNotificationService
from interviewer.question_generator import DynamicQuestionGenerator
from interviewer.router import WebhookEventRouter
from interviewer.schemas import DevSessionSeed
from interviewer.session_store import build_session_store

app = FastAPI(title="Voice Interview Orchestrator")
logger = logging.getLogger("interviewer.main")


def _get_allowed_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if not raw:
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    return [item.strip() for item in raw.split(",") if item.strip()]


_allowed_origins = _get_allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

session_store = build_session_store()
notification_service = LocalNotificationService()
question_generator = DynamicQuestionGenerator(OpenAICompletionClient(model=DYNAMIC_QUESTION_MODEL))
analysis_pipeline = AnalysisIngestionPipeline(session_store, notification_service)
event_router = WebhookEventRouter(
    store=session_store,
    generator=question_generator,
    pipeline=analysis_pipeline,
    notifier=notification_service,
)


def _qa_mode_enabled() -> bool:
    return str(os.getenv("QA_MODE", "false")).strip().lower() in {"1", "true", "yes", "on"}


def verify_webhook_signature(body: bytes, signature: str) -> bool:
    secret = str(os.getenv("VAPI_WEBHOOK_SECRET") or "").strip()
    if not secret:
        return True

    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    provided = str(signature or "").strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    return hmac.compare_digest(expected, provided)


@app.on_event("startup")
async def startup_banner():
    if _qa_mode_enabled():
        logger.info("[SYSTEM] QA_MODE ENABLED: dev seeding routes active")
    if not str(os.getenv("VAPI_WEBHOOK_SECRET") or "").strip():
        logger.warning("[SYSTEM] VAPI_WEBHOOK_SECRET not set: webhook signatures are not verified")
    logger.info("[SYSTEM] CORS allow_origins=%s", _allowed_origins)
    logger.info("[SYSTEM] session store=%s", type(session_store).__name__)


@app.get("/healthz")
async def healthz():
    return {"status": "ok", "service": "interviewer"}


@app.get("/api/vapi/webhook")
async def webhook_liveness():
    return {
        "message": "Vapi webhook endpoint is active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/api/vapi/webhook")
async def vapi_webhook(request: Request):
    body = await request.body()
    if not verify_webhook_signature(body, request.headers.get("x-vapi-signature", "")):
        logger.error("invalid webhook signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    response = await event_router.handle(payload)
    if response is not None:
        return response

    kind = (payload.get("kind") or payload.get("type")) if isinstance(payload, dict) else None
    return {"success": True, "message": f"Processed {kind or 'unknown'} event"}


@app.post("/api/dev/sessions")
async def dev_seed_session(seed: DevSessionSeed):
    if not _qa_mode_enabled():
        raise HTTPException(status_code=404, detail="Not found")

    record = dict(seed.template)
    record.setdefault("template_id", str(uuid.uuid4()))
    template = Template.from_record(record)
    await session_store.save_template(template)

    session = await session_store.create_session(
        InterviewSession(
            session_id=str(uuid.uuid4()),
            call_id=seed.call_id,
            template_id=template.template_id,
            status=SessionStatus.SCHEDULED,
            candidate_name=seed.candidate_name,
            candidate_email=seed.candidate_email,
            position=seed.position,
            interviewer_id=seed.interviewer_id,
        )
    )
    return {"session_id": session.session_id, "template_id": template.template_id, "questions": len(template.questions)}


@app.get("/api/dev/sessions/{call_id}")
async def dev_get_session(call_id: str):
    if not _qa_mode_enabled():
        raise HTTPException(status_code=404, detail="Not found")

    session = await session_store.get_by_call_id(call_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session.to_dict()
