from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import weakref
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Protocol

from interviewer.errors import PersistenceError, SessionNotFoundError
from interviewer.models import AnalysisArtifact, InterviewSession, SessionStatus, Template, utcnow

logger = logging.getLogger("interviewer.session_store")

# mutate functions return True when they changed the session; False skips the write
MutateFn = Callable[[InterviewSession], bool]


@dataclass
class MutationResult:
    session: InterviewSession
    changed: bool
    # set by upsert_analysis when this write is the one that made the session evaluated
    first_evaluation: bool = False


def apply_analysis(session: InterviewSession, artifact: AnalysisArtifact, completed_at: datetime) -> bool:
    """
    Fill analysis fields that are still empty; a field once written is never
    replaced. Also seals the session when nothing sealed it before.
    """
    if session.analysis is None:
        session.analysis = copy.deepcopy(artifact)
    elif not session.analysis.fill_missing(artifact):
        return False
    if session.analyzed_at is None and session.analysis.has_evaluation():
        session.analyzed_at = completed_at
    session.status = SessionStatus.COMPLETED
    if session.completed_at is None:
        session.completed_at = completed_at
    return True


async def _upsert_analysis(
    store: "SessionStore", session_id: str, artifact: AnalysisArtifact, completed_at: datetime | None
) -> MutationResult:
    stamp = completed_at or utcnow()
    first_evaluation = False

    def _apply(session: InterviewSession) -> bool:
        nonlocal first_evaluation
        had_evaluation = session.analysis is not None and session.analysis.has_evaluation()
        changed = apply_analysis(session, artifact, stamp)
        first_evaluation = changed and not had_evaluation and session.analysis.has_evaluation()
        return changed

    result = await store.update(session_id, _apply)
    result.first_evaluation = result.changed and first_evaluation
    return result


class SessionStore(Protocol):
    async def get_by_call_id(self, call_id: str) -> InterviewSession | None:
        ...

    async def get_with_template(self, call_id: str) -> tuple[InterviewSession, Template] | None:
        ...

    async def update(self, session_id: str, mutate: MutateFn) -> MutationResult:
        ...

    async def upsert_analysis(
        self, session_id: str, artifact: AnalysisArtifact, completed_at: datetime | None = None
    ) -> MutationResult:
        ...

    async def save_template(self, template: Template) -> None:
        ...

    async def create_session(self, session: InterviewSession) -> InterviewSession:
        ...


class LocalSessionStore:
    """In-process store; one asyncio.Lock per session serializes its writers."""

    def __init__(self):
        self._lock = asyncio.Lock()
        # an entry lives only while some writer holds or awaits that session lock
        self._session_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._sessions: dict[str, InterviewSession] = {}
        self._call_index: dict[str, str] = {}
        self._templates: dict[str, Template] = {}

    def _session_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._session_locks[session_id] = lock
        return lock

    async def create_session(self, session: InterviewSession) -> InterviewSession:
        async with self._lock:
            self._sessions[session.session_id] = copy.deepcopy(session)
            if session.call_id:
                self._call_index[session.call_id] = session.session_id
        return copy.deepcopy(session)

    async def save_template(self, template: Template) -> None:
        async with self._lock:
            self._templates[template.template_id] = template

    async def get_by_call_id(self, call_id: str) -> InterviewSession | None:
        if not call_id:
            return None
        async with self._lock:
            session_id = self._call_index.get(call_id)
            session = self._sessions.get(session_id) if session_id else None
            return copy.deepcopy(session) if session else None

    async def get_with_template(self, call_id: str) -> tuple[InterviewSession, Template] | None:
        session = await self.get_by_call_id(call_id)
        if session is None:
            return None
        async with self._lock:
            template = self._templates.get(session.template_id)
        if template is None:
            logger.warning("template missing | call_id=%s template_id=%s", call_id, session.template_id)
            return None
        return session, template

    async def update(self, session_id: str, mutate: MutateFn) -> MutationResult:
        async with self._session_lock(session_id):
            current = self._sessions.get(session_id)
            if current is None:
                raise SessionNotFoundError(session_id)
            working = copy.deepcopy(current)
            try:
                changed = bool(mutate(working))
            except Exception as exc:
                raise PersistenceError(f"mutation failed for session {session_id}") from exc
            if changed:
                self._sessions[session_id] = working
                if working.call_id:
                    self._call_index[working.call_id] = session_id
            return MutationResult(session=copy.deepcopy(working), changed=changed)

    async def upsert_analysis(
        self, session_id: str, artifact: AnalysisArtifact, completed_at: datetime | None = None
    ) -> MutationResult:
        return await _upsert_analysis(self, session_id, artifact, completed_at)


class RedisSessionStore:
    """Redis-backed sessions with WATCH/MULTI optimistic concurrency.

    Keys:
    - interview:session:{session_id} (json)
    - interview:call:{call_id} (session id)
    - interview:template:{template_id} (json)
    """

    def __init__(self, redis_url: str, max_retries: int = 8):
        try:
            import redis.asyncio as redis_async  # type: ignore
        except Exception as exc:
            raise RuntimeError("redis package not installed; install 'redis' to enable the redis session store") from exc

        self._redis = redis_async.from_url(redis_url, decode_responses=True)
        self.max_retries = max(1, int(max_retries))

    @staticmethod
    def _session_key(session_id: str) -> str:
        return f"interview:session:{session_id}"

    @staticmethod
    def _call_key(call_id: str) -> str:
        return f"interview:call:{call_id}"

    @staticmethod
    def _template_key(template_id: str) -> str:
        return f"interview:template:{template_id}"

    async def create_session(self, session: InterviewSession) -> InterviewSession:
        await self._redis.set(self._session_key(session.session_id), json.dumps(session.to_dict()))
        if session.call_id:
            await self._redis.set(self._call_key(session.call_id), session.session_id)
        return session

    async def save_template(self, template: Template) -> None:
        await self._redis.set(self._template_key(template.template_id), json.dumps(template.to_record()))

    async def get_by_call_id(self, call_id: str) -> InterviewSession | None:
        if not call_id:
            return None
        session_id = await self._redis.get(self._call_key(call_id))
        if not session_id:
            return None
        raw = await self._redis.get(self._session_key(session_id))
        return InterviewSession.from_dict(json.loads(raw)) if raw else None

    async def get_with_template(self, call_id: str) -> tuple[InterviewSession, Template] | None:
        session = await self.get_by_call_id(call_id)
        if session is None:
            return None
        raw = await self._redis.get(self._template_key(session.template_id))
        if not raw:
            logger.warning("template missing | call_id=%s template_id=%s", call_id, session.template_id)
            return None
        return session, Template.from_record(json.loads(raw))

    async def update(self, session_id: str, mutate: MutateFn) -> MutationResult:
        from redis.exceptions import WatchError  # type: ignore

        key = self._session_key(session_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            for attempt in range(self.max_retries):
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        await pipe.unwatch()
                        raise SessionNotFoundError(session_id)
                    session = InterviewSession.from_dict(json.loads(raw))
                    if not mutate(session):
                        await pipe.unwatch()
                        return MutationResult(session=session, changed=False)
                    pipe.multi()
                    pipe.set(key, json.dumps(session.to_dict()))
                    await pipe.execute()
                    return MutationResult(session=session, changed=True)
                except WatchError:
                    logger.info("session write conflict | session_id=%s attempt=%s", session_id, attempt + 1)
                    continue
                except SessionNotFoundError:
                    raise
                except Exception as exc:
                    raise PersistenceError(f"redis update failed for session {session_id}") from exc

        raise PersistenceError(f"session {session_id} still contended after {self.max_retries} attempts")

    async def upsert_analysis(
        self, session_id: str, artifact: AnalysisArtifact, completed_at: datetime | None = None
    ) -> MutationResult:
        return await _upsert_analysis(self, session_id, artifact, completed_at)


def build_session_store() -> SessionStore:
    use_redis = str(os.getenv("USE_REDIS_SESSION_STORE", "false")).strip().lower() in {"1", "true", "yes", "on"}
    if not use_redis:
        return LocalSessionStore()

    redis_url = str(os.getenv("REDIS_URL") or "").strip()
    if not redis_url:
        raise RuntimeError("USE_REDIS_SESSION_STORE=true requires REDIS_URL")
    return RedisSessionStore(redis_url)
