import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from interviewer.models import InterviewSession, QuestionSpec, SessionStatus, Template  # noqa: E402
from interviewer.session_store import LocalSessionStore  # noqa: E402

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("QA_MODE", "true")
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.delenv("VAPI_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("USE_REDIS_SESSION_STORE", raising=False)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now = self.now + timedelta(minutes=minutes)


class FakeCompletion:
    def __init__(self, replies=None, error: Exception | None = None):
        self.replies = list(replies or [])
        self.error = error
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.replies.pop(0) if self.replies else ""


class RecordingNotifier:
    def __init__(self):
        self.sent: list[dict] = []

    async def create(self, target_id, type, message, link=None):
        self.sent.append({"target_id": target_id, "type": type.value, "message": message, "link": link})

    def of_type(self, type_value: str) -> list[dict]:
        return [item for item in self.sent if item["type"] == type_value]


def make_template(questions=("Tell me about your background.", "Describe a hard bug you fixed."), duration=10.0):
    return Template(
        template_id="tpl-1",
        questions=tuple(QuestionSpec(text=q, category="general") for q in questions),
        duration_minutes=duration,
        instructions="Be warm and concise.",
        title="Backend Engineer Screen",
        category="technical",
        difficulty="Intermediate",
    )


def make_session(call_id="call-1", **overrides) -> InterviewSession:
    data = dict(
        session_id=f"sess-{call_id}",
        call_id=call_id,
        template_id="tpl-1",
        status=SessionStatus.SCHEDULED,
        candidate_name="Ada Lovelace",
        position="Backend Engineer",
        interviewer_id="recruiter-7",
    )
    data.update(overrides)
    return InterviewSession(**data)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def seeded_store():
    store = LocalSessionStore()
    await store.save_template(make_template())
    await store.create_session(make_session())
    return store
