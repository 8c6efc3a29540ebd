"""In-memory form template editing engine.

One ``TemplateEditor`` owns one template being edited: its ordered sections,
a flat arena of fields (each carrying ``form_section_id``), the workflow,
selection/mode UI state and the undo history. Every mutation builds new
section/field lists and installs them in one assignment, so a snapshot taken
before a mutation never aliases the state after it.

Invalid ids or indices are no-ops: the call returns ``None``/``False`` and
nothing changes, the dirty flag and the history included.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from formkit.field_codes import field_code_for, new_id, unique_code

from edit_history import DEFAULT_MAX_DEPTH, EditHistory
from form_validate import validate_template


logger = logging.getLogger("formkit.editor")

STRUCTURAL_OPS = frozenset(
    {
        "add_section",
        "delete_section",
        "reorder_sections",
        "duplicate_section",
        "add_field",
        "delete_field",
        "reorder_fields",
        "move_field_to_section",
        "duplicate_field",
    }
)
UNDOABLE_OPS = STRUCTURAL_OPS | {"update_section", "update_field"}
MODES = ("edit", "preview")

_RELATION_KEYS = {"form_sections", "form_workflows", "form_fields"}
_SECTION_LOCKED_KEYS = {"id", "order_index"} | _RELATION_KEYS
_FIELD_LOCKED_KEYS = {"id", "form_section_id", "order_index"}
_FIELD_LIBRARY_KEYS = (
    "library_source",
    "library_filters",
    "auto_populate_fields",
    "auto_populate_mappings",
    "allow_quick_add",
    "use_search_mode",
    "search_mode_threshold",
)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def default_template() -> dict:
    return {
        "form_code": "",
        "name": "",
        "description": "",
        "cor_element": None,
        "frequency": "as_needed",
        "estimated_time_minutes": 5,
        "icon": "file-text",
        "color": "#3b82f6",
        "is_active": False,
        "is_mandatory": False,
        "version": 1,
    }


def default_workflow() -> dict:
    return {
        "submit_to_role": "supervisor",
        "notify_roles": [],
        "notify_emails": [],
        "creates_task": False,
        "requires_approval": False,
        "sync_priority": 3,
        "auto_create_evidence": False,
    }


def _pick(data: dict, key: str, default: Any) -> Any:
    value = data.get(key)
    return default if value is None else copy.deepcopy(value)


def _is_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _splice(items: List[dict], from_index: int, to_index: int) -> List[dict] | None:
    if not (_is_index(from_index) and _is_index(to_index)):
        return None
    size = len(items)
    if not (0 <= from_index < size and 0 <= to_index < size) or from_index == to_index:
        return None
    out = list(items)
    moved = out.pop(from_index)
    out.insert(to_index, moved)
    return out


def _reindexed(items: Iterable[dict]) -> List[dict]:
    out = []
    for idx, item in enumerate(items):
        if item.get("order_index") != idx:
            item = {**item, "order_index": idx}
        out.append(item)
    return out


def _replace_fields(arena: List[dict], updated: List[dict], removed: Iterable[str] = ()) -> List[dict]:
    removed = set(removed)
    by_id = {f["id"]: f for f in updated}
    out = []
    for field in arena:
        if field["id"] in removed:
            continue
        out.append(by_id.pop(field["id"], field))
    out.extend(by_id.values())
    return out


class TemplateEditor:
    def __init__(self, max_history: int = DEFAULT_MAX_DEPTH, undoable_ops: Iterable[str] | None = None) -> None:
        ops = STRUCTURAL_OPS if undoable_ops is None else frozenset(undoable_ops)
        unknown = ops - UNDOABLE_OPS
        if unknown:
            raise ValueError(f"Operations cannot be undoable: {sorted(unknown)}")
        self.undoable_ops = ops
        self._history = EditHistory(max_history)
        self._reset_state()

    def _reset_state(self) -> None:
        self._template: Dict[str, Any] | None = None
        self._workflow: Dict[str, Any] | None = None
        self._sections: List[dict] = []
        self._fields: List[dict] = []
        self.selected_section_id: str | None = None
        self.selected_field_id: str | None = None
        self.mode = "edit"
        self.is_dirty = False
        self.is_saving = False
        self.last_saved_at: str | None = None
        self.validation_errors: List[str] = []
        self.validation_issues: List[dict] = []
        self._history.clear()

    # ------------------------------------------------------------------
    # read accessors

    @property
    def template(self) -> dict | None:
        return copy.deepcopy(self._template)

    @property
    def workflow(self) -> dict | None:
        return copy.deepcopy(self._workflow)

    @property
    def sections(self) -> List[dict]:
        return copy.deepcopy(self._sections)

    @property
    def max_history(self) -> int:
        return self._history.max_depth

    def get_section(self, section_id: str) -> dict | None:
        section = self._find_section(section_id)
        return copy.deepcopy(section) if section else None

    def get_field(self, field_id: str) -> dict | None:
        field = self._find_field(field_id)
        return copy.deepcopy(field) if field else None

    def fields_of_section(self, section_id: str) -> List[dict]:
        return copy.deepcopy(self._section_view(section_id))

    def all_fields(self) -> List[dict]:
        return copy.deepcopy(self._fields)

    def field_by_code(self, code: str) -> dict | None:
        for field in self._fields:
            if field.get("field_code") == code:
                return copy.deepcopy(field)
        return None

    def generate_field_code(self, label: str | None) -> str:
        return field_code_for(label, self._codes())

    def can_undo(self) -> bool:
        return self._history.can_undo()

    def can_redo(self) -> bool:
        return self._history.can_redo()

    def _find_section(self, section_id: Any) -> dict | None:
        for section in self._sections:
            if section["id"] == section_id:
                return section
        return None

    def _find_field(self, field_id: Any) -> dict | None:
        for field in self._fields:
            if field["id"] == field_id:
                return field
        return None

    def _section_view(self, section_id: str) -> List[dict]:
        owned = [f for f in self._fields if f.get("form_section_id") == section_id]
        return sorted(owned, key=lambda f: f.get("order_index", 0))

    def _codes(self) -> set:
        return {f.get("field_code") for f in self._fields}

    def _fresh_id(self, requested: Any, taken: Iterable[str]) -> str:
        if isinstance(requested, str) and requested and requested not in set(taken):
            return requested
        return new_id()

    # ------------------------------------------------------------------
    # commit / history

    def _snapshot(self) -> dict:
        return {"sections": self._sections, "fields": self._fields}

    def _commit(self, op: str, sections: List[dict] | None = None, fields: List[dict] | None = None) -> None:
        before = self._snapshot() if op in self.undoable_ops else None
        if sections is not None:
            self._sections = sections
        if fields is not None:
            self._fields = fields
        self.is_dirty = True
        if before is not None:
            self._history.rebase(before)
            self._history.push(self._snapshot())
        logger.debug(
            "editor_op op=%s template_id=%s sections=%s fields=%s history=%s",
            op,
            (self._template or {}).get("id"),
            len(self._sections),
            len(self._fields),
            len(self._history),
        )

    def _noop(self, op: str, reason: str) -> None:
        logger.debug("editor_noop op=%s reason=%s", op, reason)

    def _restore(self, snapshot: dict) -> None:
        self._sections = snapshot["sections"]
        self._fields = snapshot["fields"]
        if self._find_section(self.selected_section_id) is None:
            self.selected_section_id = None
        if self._find_field(self.selected_field_id) is None:
            self.selected_field_id = None
        self.is_dirty = True

    def undo(self) -> bool:
        snapshot = self._history.undo()
        if snapshot is None:
            return False
        self._restore(snapshot)
        logger.debug("editor_undo cursor=%s", self._history.cursor)
        return True

    def redo(self) -> bool:
        snapshot = self._history.redo()
        if snapshot is None:
            return False
        self._restore(snapshot)
        logger.debug("editor_redo cursor=%s", self._history.cursor)
        return True

    def clear_history(self) -> None:
        self._history.clear()

    # ------------------------------------------------------------------
    # template / workflow

    def init_template(self, template: dict | None = None) -> None:
        self._reset_state()
        base = default_template()
        if template:
            base.update({k: copy.deepcopy(v) for k, v in template.items() if k not in _RELATION_KEYS})
        self._template = base
        self._workflow = default_workflow()

    def reset_template(self) -> None:
        self._reset_state()

    def update_template(self, updates: dict) -> bool:
        if self._template is None:
            self._noop("update_template", "no_template")
            return False
        changes = {k: copy.deepcopy(v) for k, v in (updates or {}).items() if k not in _RELATION_KEYS}
        self._template = {**self._template, **changes}
        self.is_dirty = True
        return True

    def update_workflow(self, updates: dict) -> bool:
        if self._workflow is None:
            self._noop("update_workflow", "no_workflow")
            return False
        self._workflow = {**self._workflow, **copy.deepcopy(updates or {})}
        self.is_dirty = True
        return True

    # ------------------------------------------------------------------
    # sections

    def add_section(self, section: dict | None = None) -> str:
        data = section or {}
        section_id = self._fresh_id(data.get("id"), (s["id"] for s in self._sections))
        order_index = len(self._sections)
        new_section = {
            "id": section_id,
            "form_template_id": (self._template or {}).get("id") or "",
            "title": data.get("title") or f"Section {order_index + 1}",
            "description": data.get("description") or None,
            "order_index": order_index,
            "is_repeatable": bool(data.get("is_repeatable", False)),
            "min_repeats": _pick(data, "min_repeats", 1),
            "max_repeats": _pick(data, "max_repeats", 10),
            "conditional_logic": _pick(data, "conditional_logic", None),
            "created_at": data.get("created_at") or _now(),
        }
        self._commit("add_section", sections=self._sections + [new_section])
        self.select_section(section_id)
        return section_id

    def update_section(self, section_id: str, updates: dict) -> bool:
        section = self._find_section(section_id)
        if section is None:
            self._noop("update_section", "unknown_section")
            return False
        changes = {k: copy.deepcopy(v) for k, v in (updates or {}).items() if k not in _SECTION_LOCKED_KEYS}
        merged = {**section, **changes}
        sections = [merged if s["id"] == section_id else s for s in self._sections]
        self._commit("update_section", sections=sections)
        return True

    def delete_section(self, section_id: str) -> bool:
        if self._find_section(section_id) is None:
            self._noop("delete_section", "unknown_section")
            return False
        sections = _reindexed(s for s in self._sections if s["id"] != section_id)
        fields = [f for f in self._fields if f.get("form_section_id") != section_id]
        self._commit("delete_section", sections=sections, fields=fields)
        if self.selected_section_id == section_id:
            self.selected_section_id = sections[0]["id"] if sections else None
        if self.selected_field_id and self._find_field(self.selected_field_id) is None:
            self.selected_field_id = None
        return True

    def reorder_sections(self, from_index: int, to_index: int) -> bool:
        spliced = _splice(self._sections, from_index, to_index)
        if spliced is None:
            self._noop("reorder_sections", "index_out_of_range")
            return False
        self._commit("reorder_sections", sections=_reindexed(spliced))
        return True

    def duplicate_section(self, section_id: str) -> str | None:
        source = self._find_section(section_id)
        if source is None:
            self._noop("duplicate_section", "unknown_section")
            return None
        copy_id = new_id()
        now = _now()
        clone = copy.deepcopy(source)
        clone.update(
            {
                "id": copy_id,
                "title": f"{source.get('title')} (Copy)",
                "order_index": len(self._sections),
                "created_at": now,
            }
        )
        codes = self._codes()
        cloned_fields = []
        for field in self._section_view(section_id):
            code = field_code_for(field.get("label"), codes)
            codes.add(code)
            dup = copy.deepcopy(field)
            dup.update({"id": new_id(), "form_section_id": copy_id, "field_code": code, "created_at": now})
            cloned_fields.append(dup)
        self._commit("duplicate_section", sections=self._sections + [clone], fields=self._fields + cloned_fields)
        return copy_id

    # ------------------------------------------------------------------
    # fields

    def add_field(self, section_id: str, field: dict | None = None) -> str | None:
        if self._find_section(section_id) is None:
            self._noop("add_field", "unknown_section")
            return None
        data = field or {}
        codes = self._codes()
        label = data.get("label") or "New Field"
        requested_code = data.get("field_code")
        if isinstance(requested_code, str) and requested_code:
            field_code = unique_code(requested_code, codes)
        else:
            field_code = field_code_for(label, codes)
        field_id = self._fresh_id(data.get("id"), (f["id"] for f in self._fields))
        new_field = {
            "id": field_id,
            "form_section_id": section_id,
            "field_code": field_code,
            "label": label,
            "field_type": data.get("field_type") or "text",
            "placeholder": data.get("placeholder") or None,
            "help_text": data.get("help_text") or None,
            "default_value": _pick(data, "default_value", None),
            "width": data.get("width") or "full",
            "options": _pick(data, "options", None),
            "validation_rules": _pick(data, "validation_rules", {"required": False}),
            "conditional_logic": _pick(data, "conditional_logic", None),
            "order_index": len(self._section_view(section_id)),
            "created_at": data.get("created_at") or _now(),
        }
        for key in _FIELD_LIBRARY_KEYS:
            if key in data:
                new_field[key] = copy.deepcopy(data[key])
        self._commit("add_field", fields=self._fields + [new_field])
        self.select_field(field_id)
        return field_id

    def update_field(self, field_id: str, updates: dict) -> bool:
        field = self._find_field(field_id)
        if field is None:
            self._noop("update_field", "unknown_field")
            return False
        changes = {k: copy.deepcopy(v) for k, v in (updates or {}).items() if k not in _FIELD_LOCKED_KEYS}
        merged = {**field, **changes}
        self._commit("update_field", fields=[merged if f["id"] == field_id else f for f in self._fields])
        return True

    def delete_field(self, field_id: str) -> bool:
        field = self._find_field(field_id)
        if field is None:
            self._noop("delete_field", "unknown_field")
            return False
        section_id = field.get("form_section_id")
        remaining = _reindexed(f for f in self._section_view(section_id) if f["id"] != field_id)
        self._commit("delete_field", fields=_replace_fields(self._fields, remaining, removed=[field_id]))
        if self.selected_field_id == field_id:
            self.selected_field_id = None
        return True

    def reorder_fields(self, section_id: str, from_index: int, to_index: int) -> bool:
        if self._find_section(section_id) is None:
            self._noop("reorder_fields", "unknown_section")
            return False
        spliced = _splice(self._section_view(section_id), from_index, to_index)
        if spliced is None:
            self._noop("reorder_fields", "index_out_of_range")
            return False
        self._commit("reorder_fields", fields=_replace_fields(self._fields, _reindexed(spliced)))
        return True

    def move_field_to_section(self, field_id: str, from_section_id: str, to_section_id: str, target_index: int) -> bool:
        field = self._find_field(field_id)
        if (
            field is None
            or field.get("form_section_id") != from_section_id
            or self._find_section(from_section_id) is None
            or self._find_section(to_section_id) is None
        ):
            self._noop("move_field_to_section", "unknown_field_or_section")
            return False
        source = [f for f in self._section_view(from_section_id) if f["id"] != field_id]
        if from_section_id == to_section_id:
            if not _is_index(target_index) or not 0 <= target_index <= len(source):
                self._noop("move_field_to_section", "index_out_of_range")
                return False
            source.insert(target_index, field)
            if [f["id"] for f in source] == [f["id"] for f in self._section_view(from_section_id)]:
                self._noop("move_field_to_section", "unchanged")
                return False
            updated = _reindexed(source)
        else:
            target = self._section_view(to_section_id)
            if not _is_index(target_index) or not 0 <= target_index <= len(target):
                self._noop("move_field_to_section", "index_out_of_range")
                return False
            target.insert(target_index, {**field, "form_section_id": to_section_id})
            updated = _reindexed(source) + _reindexed(target)
        self._commit("move_field_to_section", fields=_replace_fields(self._fields, updated))
        if self.selected_field_id == field_id:
            self.selected_section_id = to_section_id
        return True

    def duplicate_field(self, field_id: str) -> str | None:
        field = self._find_field(field_id)
        if field is None:
            self._noop("duplicate_field", "unknown_field")
            return None
        section_id = field.get("form_section_id")
        dup = copy.deepcopy(field)
        dup.update(
            {
                "id": new_id(),
                "field_code": field_code_for(field.get("label"), self._codes()),
                "order_index": len(self._section_view(section_id)),
                "created_at": _now(),
            }
        )
        self._commit("duplicate_field", fields=self._fields + [dup])
        self.select_field(dup["id"])
        return dup["id"]

    # ------------------------------------------------------------------
    # selection / mode

    def select_section(self, section_id: str | None) -> bool:
        if section_id is not None and self._find_section(section_id) is None:
            return False
        self.selected_section_id = section_id
        self.selected_field_id = None
        return True

    def select_field(self, field_id: str | None) -> bool:
        if field_id is None:
            self.selected_field_id = None
            return True
        field = self._find_field(field_id)
        if field is None:
            return False
        self.selected_field_id = field_id
        self.selected_section_id = field.get("form_section_id")
        return True

    def set_mode(self, mode: str) -> bool:
        if mode not in MODES:
            return False
        self.mode = mode
        return True

    def toggle_mode(self) -> str:
        self.mode = "preview" if self.mode == "edit" else "edit"
        return self.mode

    # ------------------------------------------------------------------
    # save bookkeeping / validation

    def set_saving(self, is_saving: bool) -> None:
        self.is_saving = bool(is_saving)

    def mark_saved(self) -> None:
        self.is_dirty = False
        self.last_saved_at = _now()

    def mark_dirty(self) -> None:
        self.is_dirty = True

    def validate(self) -> bool:
        issues = validate_template(self._template, self._sections, self._fields)
        self.validation_issues = issues
        self.validation_errors = [issue["message"] for issue in issues]
        return not issues

    def clear_validation_errors(self) -> None:
        self.validation_errors = []
        self.validation_issues = []
