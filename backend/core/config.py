import os
from pathlib import Path
from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[1]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)

OPENAI_API_KEY = str(os.getenv("OPENAI_API_KEY") or "").strip()
MODEL_NAME = str(os.getenv("MODEL_NAME") or "gpt-4.1-mini").strip()
DYNAMIC_QUESTION_MODEL = str(os.getenv("DYNAMIC_QUESTION_MODEL") or MODEL_NAME).strip()
LLM_TIMEOUT_SEC = max(1.0, float(os.getenv("LLM_TIMEOUT_SEC", "12")))
LLM_RETRIES = max(0, int(os.getenv("LLM_RETRIES", "1")))
DYNAMIC_QUESTION_TIMEOUT_SEC = max(1.0, float(os.getenv("DYNAMIC_QUESTION_TIMEOUT_SEC", "15")))
CONTEXT_WINDOW_MESSAGES = max(1, int(os.getenv("CONTEXT_WINDOW_MESSAGES", "10")))
