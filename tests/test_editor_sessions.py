import os
import sys
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.editor_sessions import EditorSessions
from form_editor import TemplateEditor


class TestEditorSessions(unittest.TestCase):
    def setUp(self) -> None:
        self.sessions = EditorSessions(TemplateEditor)

    def test_open_initialises_blank_template(self) -> None:
        session = self.sessions.open()
        self.assertIsNone(session.template_id)
        self.assertEqual(session.editor.template["name"], "")
        self.assertEqual(len(self.sessions), 1)

    def test_open_with_hydrate_callback(self) -> None:
        session = self.sessions.open("tpl-1", hydrate=lambda editor: editor.init_template({"name": "Loaded"}))
        self.assertEqual(session.template_id, "tpl-1")
        self.assertEqual(session.editor.template["name"], "Loaded")

    def test_sessions_are_independent(self) -> None:
        a = self.sessions.open()
        b = self.sessions.open()
        a.editor.add_section()
        self.assertEqual(b.editor.sections, [])
        self.assertNotEqual(a.session_id, b.session_id)

    def test_editing_holds_session_lock(self) -> None:
        session = self.sessions.open()
        with self.sessions.editing(session.session_id) as current:
            self.assertIs(current, session)
            self.assertTrue(session.lock.locked())
        self.assertFalse(session.lock.locked())

    def test_editing_unknown_yields_none(self) -> None:
        with self.sessions.editing("missing") as current:
            self.assertIsNone(current)

    def test_close_resets_editor(self) -> None:
        session = self.sessions.open()
        self.assertTrue(self.sessions.close(session.session_id))
        self.assertIsNone(session.editor.template)
        self.assertIsNone(self.sessions.get(session.session_id))
        self.assertFalse(self.sessions.close(session.session_id))


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestEditorSessionBounds(unittest.TestCase):
    def test_idle_sessions_expire_on_open(self) -> None:
        clock = _Clock()
        sessions = EditorSessions(TemplateEditor, idle_ttl_s=60, clock=clock)
        stale = sessions.open()
        clock.now = 30
        busy = sessions.open()
        clock.now = 70
        with sessions.editing(busy.session_id):
            pass
        clock.now = 100
        sessions.open()
        self.assertIsNone(sessions.get(stale.session_id))
        self.assertIsNone(stale.editor.template)
        self.assertIs(sessions.get(busy.session_id), busy)
        self.assertEqual(len(sessions), 2)

    def test_cap_evicts_least_recently_used(self) -> None:
        clock = _Clock()
        sessions = EditorSessions(TemplateEditor, max_sessions=2, clock=clock)
        first = sessions.open()
        clock.now = 1
        second = sessions.open()
        clock.now = 2
        with sessions.editing(first.session_id):
            pass
        clock.now = 3
        third = sessions.open()
        self.assertEqual(len(sessions), 2)
        self.assertIsNone(sessions.get(second.session_id))
        self.assertIs(sessions.get(first.session_id), first)
        self.assertIs(sessions.get(third.session_id), third)

    def test_cap_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            EditorSessions(TemplateEditor, max_sessions=0)


if __name__ == "__main__":
    unittest.main()
