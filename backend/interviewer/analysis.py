"""
Post-call analysis ingestion.

The voice platform reports its analysis in more than one place and with
inconsistent field names. Extraction walks an ordered list of extractors and
takes the first that finds something; mapping then normalizes the result into
an AnalysisArtifact. Nothing is persisted unless the artifact carries at least
one evaluation field or the call transcript/recording. Artifact events arrive
as separate fragments; each fills only the fields still empty.
"""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any, Callable

from core.logger import log_event
from interviewer.errors import PersistenceError, SessionNotFoundError
from interviewer.models import AnalysisArtifact, HiringRecommendation
from interviewer.notifications import NotificationService, NotificationType, notify_safely
from interviewer.session_store import SessionStore

logger = logging.getLogger("interviewer.analysis")

Extractor = Callable[[dict], "dict | None"]


def _norm(key: Any) -> str:
    return re.sub(r"[^a-z0-9]", "", str(key or "").lower())


def _pick(obj: Any, *names: str) -> Any:
    """First present value among names, matching camelCase, snake_case and display spellings alike."""
    if not isinstance(obj, dict):
        return None
    normalized = {_norm(k): v for k, v in obj.items()}
    for name in names:
        value = normalized.get(_norm(name))
        if value not in (None, "", [], {}):
            return value
    return None


def _report_roots(report: dict) -> list[dict]:
    roots = []
    nested = report.get("analysisPayload")
    if isinstance(nested, dict):
        roots.append(nested)
    roots.append(report)
    return roots


# ---------- EXTRACTORS ----------

def extract_analysis_object(report: dict) -> dict | None:
    for root in _report_roots(report):
        for container in (root, root.get("message")):
            if not isinstance(container, dict):
                continue
            analysis = container.get("analysis")
            if isinstance(analysis, dict) and analysis:
                return analysis
    return None


def extract_from_artifact(report: dict) -> dict | None:
    for root in _report_roots(report):
        message = root.get("message") if isinstance(root.get("message"), dict) else {}
        for artifact in (root.get("artifact"), message.get("artifact")):
            if not isinstance(artifact, dict):
                continue
            evaluation = artifact.get("evaluation")
            # success-evaluation artifacts sometimes carry score/successful at their root
            if evaluation is None and any(k in artifact for k in ("score", "successful", "feedback")):
                evaluation = {
                    "score": artifact.get("score"),
                    "successful": artifact.get("successful"),
                    "feedback": artifact.get("feedback"),
                }
            rebuilt = {
                "summary": artifact.get("summary"),
                "successEvaluation": evaluation,
                "structuredData": artifact.get("data"),
                "transcript": artifact.get("transcript"),
                "recordingUrl": artifact.get("recordingUrl"),
            }
            if any(value not in (None, "", {}) for value in rebuilt.values()):
                return rebuilt
    return None


DEFAULT_EXTRACTORS: tuple[Extractor, ...] = (
    extract_analysis_object,
    extract_from_artifact,
)


def extract_analysis(report: dict, extractors: tuple[Extractor, ...] = DEFAULT_EXTRACTORS) -> dict | None:
    if not isinstance(report, dict):
        return None
    for extractor in extractors:
        try:
            found = extractor(report)
        except Exception as exc:
            logger.warning("extractor failed | extractor=%s err=%s", getattr(extractor, "__name__", extractor), exc)
            continue
        if found:
            return found
    return None


# ---------- MAPPING ----------

_CATEGORY_ALIASES = {
    "communication": {"communication", "communicationskills", "communicationscore"},
    "technical": {"technical", "technicalknowledge", "technicalskills", "technicalability", "technicalscore"},
    "experience": {"experience", "experiencerelevance", "relevantexperience", "experiencescore"},
    "cultural_fit": {"culturalfit", "culturefit", "cultural", "culturalfitscore"},
}

_METRIC_ALIASES = {
    "engagement": {"engagement", "engagementlevel", "engagementscore"},
    "clarity": {"clarity", "communicationclarity", "clarityscore"},
    "completeness": {"completeness", "completenessscore", "answercompleteness"},
}

_RECOMMENDATION_ALIASES = {
    HiringRecommendation.STRONG_YES: {"strongyes", "stronghire", "stronglyrecommend", "definitelyhire"},
    HiringRecommendation.YES: {"yes", "hire", "recommend", "recommended"},
    HiringRecommendation.MAYBE: {"maybe", "neutral", "leanhire", "leannohire", "undecided", "consider"},
    HiringRecommendation.NO: {"no", "nohire", "reject", "donothire", "notrecommended", "strongno", "strongnohire"},
}


def coerce_score(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        score = float(value)
    else:
        text = str(value).strip()
        ratio = re.fullmatch(r"(\d+(?:\.\d+)?)\s*/\s*(\d+(?:\.\d+)?)", text)
        try:
            if ratio:
                denominator = float(ratio.group(2))
                if denominator <= 0:
                    return None
                score = float(ratio.group(1)) / denominator * 100.0
            else:
                score = float(text.rstrip("%"))
        except ValueError:
            return None
    return max(0.0, min(100.0, score))


def normalize_recommendation(value: Any) -> HiringRecommendation | None:
    key = _norm(value)
    if not key:
        return None
    for recommendation, aliases in _RECOMMENDATION_ALIASES.items():
        if key in aliases:
            return recommendation
    return None


def _as_text_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    items = value if isinstance(value, (list, tuple)) else [value]
    cleaned = [str(item).strip() for item in items if str(item or "").strip()]
    return cleaned or None


def _as_text(value: Any) -> str | None:
    if value in (None, "", {}, []):
        return None
    if isinstance(value, str):
        return value.strip() or None
    return json.dumps(value, ensure_ascii=False, default=str)


def _map_scores(raw: Any, aliases: dict[str, set[str]]) -> dict[str, float] | None:
    if not isinstance(raw, dict):
        return None
    mapped: dict[str, float] = {}
    for key, value in raw.items():
        normalized = _norm(key)
        for canonical, names in aliases.items():
            if normalized in names and canonical not in mapped:
                score = coerce_score(value)
                if score is not None:
                    mapped[canonical] = score
    return mapped or None


def _success_evaluation(raw: Any) -> tuple[float | None, bool | None, str | None]:
    """Returns (score, successful, feedback) from whatever shape the evaluation came in."""
    if isinstance(raw, dict):
        successful = raw.get("successful")
        return (
            coerce_score(raw.get("score")),
            successful if isinstance(successful, bool) else None,
            _as_text(raw.get("feedback")),
        )
    if isinstance(raw, bool):
        return None, raw, None
    if isinstance(raw, str) and raw.strip().lower() in {"true", "false", "pass", "fail"}:
        return None, raw.strip().lower() in {"true", "pass"}, None
    return coerce_score(raw), None, None


def map_analysis(analysis: dict, report: dict | None = None) -> AnalysisArtifact:
    structured = _pick(analysis, "structuredData", "data")
    structured = structured if isinstance(structured, dict) else {}
    summary = _pick(analysis, "summary")
    evaluation_score, successful, evaluation_feedback = _success_evaluation(
        _pick(analysis, "successEvaluation", "evaluation")
    )

    artifact = AnalysisArtifact()

    # structured-data score wins over the success evaluation score
    structured_score = coerce_score(_pick(structured, "overallScore", "analysisScore", "score"))
    artifact.overall_score = structured_score if structured_score is not None else evaluation_score

    artifact.category_scores = _map_scores(
        _pick(structured, "categoryScores", "scores"), _CATEGORY_ALIASES
    )
    artifact.strengths = _as_text_list(_pick(structured, "strengths"))
    artifact.areas_for_improvement = _as_text_list(
        _pick(structured, "areasForImprovement", "improvements", "weaknesses")
    )
    artifact.key_insights = _as_text_list(_pick(structured, "keyInsights", "insights"))

    recommendation = normalize_recommendation(
        _pick(structured, "hiringRecommendation", "recommendation")
    )
    if recommendation is None and successful is not None:
        recommendation = HiringRecommendation.YES if successful else HiringRecommendation.NO
    artifact.hiring_recommendation = recommendation

    responses = _pick(structured, "questionResponses", "questionScores")
    if responses is None and isinstance(summary, dict):
        responses = _pick(summary, "questions")
    if isinstance(responses, list):
        artifact.question_responses = [r for r in responses if isinstance(r, dict)] or None

    artifact.interview_metrics = _map_scores(
        _pick(structured, "interviewMetrics", "metrics"), _METRIC_ALIASES
    )
    artifact.feedback = _as_text(_pick(structured, "reasoning", "feedback")) or evaluation_feedback
    artifact.summary = _as_text(summary)

    message = (report or {}).get("message")
    recording_source = message if isinstance(message, dict) else {}
    artifact.transcript = _as_text(_pick(recording_source, "transcript") or _pick(analysis, "transcript"))
    artifact.recording_url = _as_text(_pick(recording_source, "recordingUrl") or _pick(analysis, "recordingUrl"))
    return artifact


# ---------- PIPELINE ----------

class AnalysisIngestionPipeline:

    def __init__(
        self,
        store: SessionStore,
        notifier: NotificationService | None = None,
        extractors: tuple[Extractor, ...] = DEFAULT_EXTRACTORS,
    ):
        self.store = store
        self.notifier = notifier
        self.extractors = extractors

    def build_artifact(self, report: dict) -> AnalysisArtifact | None:
        analysis = extract_analysis(report, self.extractors)
        if analysis is None:
            return None
        artifact = map_analysis(analysis, report)
        if artifact.has_evaluation() or artifact.has_recording():
            return artifact
        return None

    async def ingest(self, session_id: str, report: dict, completed_at: datetime | None = None) -> bool:
        """
        Extract, map and persist the analysis for one session.

        Returns False when there is nothing usable to save or the write fails.
        Fields already saved are never rewritten, so a redelivered report or a
        later fragment only fills gaps. Results are announced once, on the
        write that first gives the session an evaluation.
        """
        try:
            artifact = self.build_artifact(report)
        except Exception:
            logger.exception("analysis mapping failed | session_id=%s", session_id)
            return False
        if artifact is None:
            logger.warning("no valid analysis data in report | session_id=%s", session_id)
            return False

        try:
            result = await self.store.upsert_analysis(session_id, artifact, completed_at)
        except SessionNotFoundError:
            logger.warning("analysis for unknown session | session_id=%s", session_id)
            return False
        except PersistenceError as exc:
            logger.error("analysis save failed | session_id=%s err=%s", session_id, exc)
            return False
        except Exception:
            logger.exception("analysis save failed | session_id=%s", session_id)
            return False

        session = result.session
        log_event(
            "analysis",
            "analysis_saved" if result.changed else "analysis_duplicate",
            session.call_id,
            session_id=session_id,
            overall_score=artifact.overall_score,
            hiring_recommendation=artifact.hiring_recommendation,
            first_evaluation=result.first_evaluation,
        )

        if result.first_evaluation:
            await notify_safely(
                self.notifier,
                target_id=session.interviewer_id,
                type=NotificationType.RESULTS_READY,
                message=f"Results for {session.candidate_name or 'the candidate'} are ready.",
                link=f"/results/individual?id={session_id}",
            )
        return True
