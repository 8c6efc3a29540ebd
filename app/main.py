"""FastAPI app exposing form template editing sessions."""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import logging
import time

from formkit.fingerprint import template_fingerprint

from app.editor_sessions import EditorSession, EditorSessions
from edit_history import DEFAULT_MAX_DEPTH
from form_editor import TemplateEditor
from template_io import export_template, hydrate_editor
from template_store import MemoryTemplateStore


app = FastAPI(title="formkit editor")
logger = logging.getLogger("formkit")
logging.basicConfig(level=logging.INFO)

APP_ENV = os.getenv("APP_ENV", os.getenv("ENV", "dev")).strip().lower() or "dev"
IS_DEV = APP_ENV == "dev"
MAX_HISTORY = int(os.getenv("FORMKIT_MAX_HISTORY", str(DEFAULT_MAX_DEPTH)))
UNDOABLE_OPS = [op.strip() for op in os.getenv("FORMKIT_UNDOABLE_OPS", "").split(",") if op.strip()] or None
REQ_SLOW_MS = float(os.getenv("FORMKIT_REQ_SLOW_MS", "250"))
MAX_SESSIONS = int(os.getenv("FORMKIT_MAX_SESSIONS", "200"))
SESSION_TTL_S = float(os.getenv("FORMKIT_SESSION_TTL_S", "3600"))
_LOCAL_CORS_REGEX = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("FORMKIT_CORS_ORIGINS", "").split(",")
    if origin.strip()
}


def _new_editor() -> TemplateEditor:
    return TemplateEditor(max_history=MAX_HISTORY, undoable_ops=UNDOABLE_OPS)


# Bad history configuration fails at import.
_new_editor()
logger.info("editor_config env=%s max_history=%s undoable_ops=%s", APP_ENV, MAX_HISTORY, UNDOABLE_OPS or "structural")

template_store = MemoryTemplateStore()
sessions = EditorSessions(_new_editor, max_sessions=MAX_SESSIONS, idle_ttl_s=SESSION_TTL_S)


@app.middleware("http")
async def cors_middleware(request: Request, call_next):
    origin = request.headers.get("origin")
    if request.method == "OPTIONS":
        response = JSONResponse({}, status_code=200)
    else:
        response = await call_next(request)
    normalized_origin = origin.rstrip("/") if isinstance(origin, str) else origin
    if normalized_origin and (normalized_origin in _CORS_ORIGINS or (IS_DEV and _LOCAL_CORS_REGEX.match(normalized_origin))):
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Credentials", "true")
        response.headers.setdefault("Access-Control-Allow-Headers", "*")
        response.headers.setdefault("Access-Control-Allow-Methods", "*")
        response.headers.setdefault("Vary", "Origin")
    return response


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    total_ms = (time.perf_counter() - start) * 1000
    route = request.scope.get("route")
    route_name = getattr(route, "name", None) or "unknown"
    logger.info("%s %s %s route=%s total_ms=%.1f", request.method, request.url.path, response.status_code, route_name, total_ms)
    if total_ms >= REQ_SLOW_MS:
        logger.warning(
            "slow_request method=%s path=%s route=%s total_ms=%.1f status=%s",
            request.method,
            request.url.path,
            route_name,
            total_ms,
            response.status_code,
        )
    if IS_DEV:
        response.headers["X-Req-MS"] = f"{total_ms:.1f}"
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _validation_response(issues: list, status: int = 400) -> JSONResponse:
    errors = [{"code": i.get("code"), "message": i.get("message"), "path": i.get("path"), "detail": None} for i in issues]
    body = {"ok": False, "errors": errors, "warnings": [], "data": None}
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _session_missing(session_id: str) -> JSONResponse:
    return _error_response("SESSION_NOT_FOUND", "Editor session not found", "session_id", detail={"session_id": session_id}, status=404)


def _not_found(kind: str, entity_id: str) -> JSONResponse:
    return _error_response(f"{kind.upper()}_NOT_FOUND", f"{kind.capitalize()} not found", f"{kind}_id", detail={"id": entity_id}, status=404)


async def _safe_json(request: Request) -> dict:
    try:
        body = await request.json()
    except Exception:
        return {}
    return body if isinstance(body, dict) else {}


def _int_param(body: dict, key: str) -> int | None:
    value = body.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _editor_state(session: EditorSession) -> dict:
    editor = session.editor
    record = export_template(editor)
    return {
        "session_id": session.session_id,
        "template_id": session.template_id,
        "record": record,
        "selected_section_id": editor.selected_section_id,
        "selected_field_id": editor.selected_field_id,
        "mode": editor.mode,
        "is_dirty": editor.is_dirty,
        "is_saving": editor.is_saving,
        "last_saved_at": editor.last_saved_at,
        "can_undo": editor.can_undo(),
        "can_redo": editor.can_redo(),
        "validation_errors": list(editor.validation_errors),
        "fingerprint": template_fingerprint({k: v for k, v in record.items() if k != "fingerprint"}),
    }


def _state_response(session: EditorSession, **extra) -> JSONResponse:
    return _ok_response({"data": {**extra, "state": _editor_state(session)}})


@app.get("/health")
async def health() -> dict:
    return {"ok": True, "sessions": len(sessions)}


# ---------------------------------------------------------------------------
# sessions


@app.post("/editor/sessions")
async def editor_open_session(request: Request):
    body = await _safe_json(request)
    template_id = body.get("template_id")
    if template_id is not None and not isinstance(template_id, str):
        return _error_response("BODY_INVALID", "template_id must be a string", "template_id")
    if template_id is None:
        session = sessions.open()
    else:
        try:
            record = template_store.get_template(template_id)
        except KeyError:
            return _not_found("template", template_id)
        session = sessions.open(template_id, hydrate=lambda editor: hydrate_editor(editor, record))
    logger.info("editor_session_opened session_id=%s template_id=%s", session.session_id, template_id)
    return _ok_response({"data": {"session_id": session.session_id, "state": _editor_state(session)}}, status=201)


@app.get("/editor/sessions/{session_id}")
async def editor_get_session(session_id: str):
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        return _state_response(session)


@app.delete("/editor/sessions/{session_id}")
async def editor_close_session(session_id: str):
    if not sessions.close(session_id):
        return _session_missing(session_id)
    logger.info("editor_session_closed session_id=%s", session_id)
    return _ok_response({"data": {"session_id": session_id, "closed": True}})


@app.patch("/editor/sessions/{session_id}/template")
async def editor_update_template(session_id: str, request: Request):
    body = await _safe_json(request)
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        session.editor.update_template({k: v for k, v in body.items() if k != "id"})
        return _state_response(session)


@app.patch("/editor/sessions/{session_id}/workflow")
async def editor_update_workflow(session_id: str, request: Request):
    body = await _safe_json(request)
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        session.editor.update_workflow(body)
        return _state_response(session)


# ---------------------------------------------------------------------------
# sections


@app.post("/editor/sessions/{session_id}/sections")
async def editor_add_section(session_id: str, request: Request):
    body = await _safe_json(request)
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        section_id = session.editor.add_section(body)
        return _state_response(session, section_id=section_id)


@app.post("/editor/sessions/{session_id}/sections/reorder")
async def editor_reorder_sections(session_id: str, request: Request):
    body = await _safe_json(request)
    from_index = _int_param(body, "from_index")
    to_index = _int_param(body, "to_index")
    if from_index is None or to_index is None:
        return _error_response("BODY_INVALID", "from_index and to_index must be integers", "body")
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        if not session.editor.reorder_sections(from_index, to_index):
            return _error_response("REORDER_INVALID", "Indices out of range or unchanged", "body", detail=body)
        return _state_response(session)


@app.patch("/editor/sessions/{session_id}/sections/{section_id}")
async def editor_update_section(session_id: str, section_id: str, request: Request):
    body = await _safe_json(request)
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        if not session.editor.update_section(section_id, body):
            return _not_found("section", section_id)
        return _state_response(session)


@app.delete("/editor/sessions/{session_id}/sections/{section_id}")
async def editor_delete_section(session_id: str, section_id: str):
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        if not session.editor.delete_section(section_id):
            return _not_found("section", section_id)
        return _state_response(session)


@app.post("/editor/sessions/{session_id}/sections/{section_id}/duplicate")
async def editor_duplicate_section(session_id: str, section_id: str):
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        copy_id = session.editor.duplicate_section(section_id)
        if copy_id is None:
            return _not_found("section", section_id)
        return _state_response(session, section_id=copy_id)


# ---------------------------------------------------------------------------
# fields


@app.post("/editor/sessions/{session_id}/sections/{section_id}/fields")
async def editor_add_field(session_id: str, section_id: str, request: Request):
    body = await _safe_json(request)
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        field_id = session.editor.add_field(section_id, body)
        if field_id is None:
            return _not_found("section", section_id)
        return _state_response(session, field_id=field_id)


@app.post("/editor/sessions/{session_id}/sections/{section_id}/fields/reorder")
async def editor_reorder_fields(session_id: str, section_id: str, request: Request):
    body = await _safe_json(request)
    from_index = _int_param(body, "from_index")
    to_index = _int_param(body, "to_index")
    if from_index is None or to_index is None:
        return _error_response("BODY_INVALID", "from_index and to_index must be integers", "body")
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        if session.editor.get_section(section_id) is None:
            return _not_found("section", section_id)
        if not session.editor.reorder_fields(section_id, from_index, to_index):
            return _error_response("REORDER_INVALID", "Indices out of range or unchanged", "body", detail=body)
        return _state_response(session)


@app.patch("/editor/sessions/{session_id}/fields/{field_id}")
async def editor_update_field(session_id: str, field_id: str, request: Request):
    body = await _safe_json(request)
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        if not session.editor.update_field(field_id, body):
            return _not_found("field", field_id)
        return _state_response(session)


@app.delete("/editor/sessions/{session_id}/fields/{field_id}")
async def editor_delete_field(session_id: str, field_id: str):
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        if not session.editor.delete_field(field_id):
            return _not_found("field", field_id)
        return _state_response(session)


@app.post("/editor/sessions/{session_id}/fields/{field_id}/duplicate")
async def editor_duplicate_field(session_id: str, field_id: str):
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        copy_id = session.editor.duplicate_field(field_id)
        if copy_id is None:
            return _not_found("field", field_id)
        return _state_response(session, field_id=copy_id)


@app.post("/editor/sessions/{session_id}/fields/{field_id}/move")
async def editor_move_field(session_id: str, field_id: str, request: Request):
    body = await _safe_json(request)
    from_section_id = body.get("from_section_id")
    to_section_id = body.get("to_section_id")
    target_index = _int_param(body, "target_index")
    if not isinstance(from_section_id, str) or not isinstance(to_section_id, str) or target_index is None:
        return _error_response("BODY_INVALID", "from_section_id, to_section_id and target_index are required", "body")
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        if not session.editor.move_field_to_section(field_id, from_section_id, to_section_id, target_index):
            return _error_response("MOVE_INVALID", "Field, sections or target index invalid", "body", detail=body)
        return _state_response(session)


# ---------------------------------------------------------------------------
# history, selection, mode, validation


@app.post("/editor/sessions/{session_id}/undo")
async def editor_undo(session_id: str):
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        applied = session.editor.undo()
        return _state_response(session, applied=applied)


@app.post("/editor/sessions/{session_id}/redo")
async def editor_redo(session_id: str):
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        applied = session.editor.redo()
        return _state_response(session, applied=applied)


@app.post("/editor/sessions/{session_id}/select")
async def editor_select(session_id: str, request: Request):
    body = await _safe_json(request)
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        editor = session.editor
        if "field_id" in body:
            selected = editor.select_field(body.get("field_id"))
        else:
            selected = editor.select_section(body.get("section_id"))
        if not selected:
            return _error_response("SELECTION_INVALID", "Nothing to select with that id", "body", detail=body, status=404)
        return _state_response(session)


@app.post("/editor/sessions/{session_id}/mode")
async def editor_mode(session_id: str, request: Request):
    body = await _safe_json(request)
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        mode = body.get("mode")
        if mode is None:
            session.editor.toggle_mode()
        elif not session.editor.set_mode(mode):
            return _error_response("MODE_INVALID", "mode must be 'edit' or 'preview'", "mode")
        return _state_response(session)


@app.post("/editor/sessions/{session_id}/validate")
async def editor_validate(session_id: str):
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        valid = session.editor.validate()
        return _ok_response({"data": {"valid": valid, "issues": session.editor.validation_issues}})


# ---------------------------------------------------------------------------
# persistence


def _save(session: EditorSession) -> dict:
    editor = session.editor
    editor.set_saving(True)
    try:
        saved = template_store.save_template(export_template(editor))
    finally:
        editor.set_saving(False)
    if session.template_id != saved["id"]:
        session.template_id = saved["id"]
        editor.update_template({"id": saved["id"]})
    editor.mark_saved()
    return saved


@app.post("/editor/sessions/{session_id}/save")
async def editor_save(session_id: str):
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        if not session.editor.validate():
            return _validation_response(session.editor.validation_issues)
        saved = _save(session)
        return _state_response(session, template_id=saved["id"], changed=saved["changed"])


@app.post("/editor/sessions/{session_id}/publish")
async def editor_publish(session_id: str):
    with sessions.editing(session_id) as session:
        if session is None:
            return _session_missing(session_id)
        editor = session.editor
        if not editor.validate():
            return _validation_response(editor.validation_issues)
        saved = _save(session)
        published = template_store.publish_template(saved["id"])
        editor.update_template({"is_active": True, "version": published["version"]})
        editor.mark_saved()
        return _state_response(session, template_id=saved["id"], version=published["version"])


@app.get("/templates")
async def templates_list():
    return _ok_response({"data": template_store.list_templates()})


@app.get("/templates/{template_id}")
async def templates_get(template_id: str):
    try:
        record = template_store.get_template(template_id)
    except KeyError:
        return _not_found("template", template_id)
    return _ok_response({"data": record})


@app.get("/templates/{template_id}/versions")
async def templates_versions(template_id: str):
    try:
        versions = template_store.list_versions(template_id)
    except KeyError:
        return _not_found("template", template_id)
    return _ok_response({"data": versions})


@app.delete("/templates/{template_id}")
async def templates_delete(template_id: str):
    if not template_store.delete_template(template_id):
        return _not_found("template", template_id)
    return _ok_response({"data": {"template_id": template_id, "deleted": True}})
