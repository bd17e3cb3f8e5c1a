import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger("interviewer.events")

# words spoken on the call; only their size reaches the log
REDACTED_FIELDS = frozenset({"content", "transcript", "prompt", "question", "utterance", "message_text"})


def _loggable(value: Any, redact: bool = False) -> Any:
	if redact:
		return {"redacted": True, "length": len(str(value or ""))}
	if isinstance(value, Enum):
		return value.value
	if isinstance(value, datetime):
		return value.isoformat()
	if isinstance(value, (str, int, float, bool)) or value is None:
		return value
	if isinstance(value, dict):
		return {str(k): _loggable(v, str(k).lower() in REDACTED_FIELDS) for k, v in value.items()}
	if isinstance(value, (list, tuple, set, frozenset)):
		return [_loggable(item) for item in value]
	return str(value)


def log_event(component: str, event: str, call_id: str, level: int = logging.INFO, **fields) -> None:
	"""One JSON line per orchestration event, keyed by the platform call id."""
	if not logger.isEnabledFor(level):
		return
	record = {
		"component": str(component or "interviewer"),
		"event": str(event or "unknown"),
		"call_id": str(call_id or ""),
	}
	for key, value in fields.items():
		record[str(key)] = _loggable(value, str(key).lower() in REDACTED_FIELDS)
	logger.log(level, json.dumps(record, ensure_ascii=False, default=str))
