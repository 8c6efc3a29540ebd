"""Editing sessions: one TemplateEditor per session, each behind its own lock."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List

from form_editor import TemplateEditor


logger = logging.getLogger("formkit.sessions")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class EditorSession:
    def __init__(self, session_id: str, editor: TemplateEditor, template_id: str | None, last_used: float) -> None:
        self.session_id = session_id
        self.editor = editor
        self.template_id = template_id
        self.created_at = _now()
        self.last_used = last_used
        self.lock = threading.Lock()


class EditorSessions:
    """Session registry bounded by an idle TTL and a session count.

    Expired sessions are dropped, then the least recently used ones while
    the registry is full, each time a session is opened.
    """

    def __init__(
        self,
        editor_factory: Callable[[], TemplateEditor],
        max_sessions: int | None = None,
        idle_ttl_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_sessions is not None and max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self._factory = editor_factory
        self._max_sessions = max_sessions
        self._idle_ttl_s = idle_ttl_s
        self._clock = clock
        self._sessions: Dict[str, EditorSession] = {}
        self._guard = threading.Lock()

    def _evict_locked(self, now: float) -> List[EditorSession]:
        evicted = []
        if self._idle_ttl_s is not None:
            for session_id, session in list(self._sessions.items()):
                if now - session.last_used > self._idle_ttl_s:
                    evicted.append(self._sessions.pop(session_id))
        if self._max_sessions is not None:
            by_age = sorted(self._sessions.values(), key=lambda s: s.last_used)
            while len(self._sessions) >= self._max_sessions:
                evicted.append(self._sessions.pop(by_age.pop(0).session_id))
        return evicted

    def _release(self, session: EditorSession, reason: str) -> None:
        with session.lock:
            session.editor.reset_template()
        logger.info("editor_session_evicted session_id=%s reason=%s", session.session_id, reason)

    def open(self, template_id: str | None = None, hydrate: Callable[[TemplateEditor], None] | None = None) -> EditorSession:
        editor = self._factory()
        if hydrate is None:
            editor.init_template()
        else:
            hydrate(editor)
        now = self._clock()
        session = EditorSession(str(uuid.uuid4()), editor, template_id, now)
        with self._guard:
            evicted = self._evict_locked(now)
            self._sessions[session.session_id] = session
        for old in evicted:
            self._release(old, "idle_or_capacity")
        return session

    def get(self, session_id: str) -> EditorSession | None:
        with self._guard:
            return self._sessions.get(session_id)

    @contextmanager
    def editing(self, session_id: str) -> Iterator[EditorSession | None]:
        session = self.get(session_id)
        if session is None:
            yield None
            return
        with session.lock:
            session.last_used = self._clock()
            yield session

    def close(self, session_id: str) -> bool:
        with self._guard:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        with session.lock:
            session.editor.reset_template()
        return True

    def __len__(self) -> int:
        with self._guard:
            return len(self._sessions)
