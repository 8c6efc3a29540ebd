"""Hydration and export of template records at the editor boundary.

The record shape is the nested one the persistence layer stores::

    {...template, "form_sections": [{...section, "form_fields": [...]}],
     "form_workflows": [workflow]}
"""

from __future__ import annotations

from typing import Any, List

from form_editor import TemplateEditor


def _by_order(items: Any) -> List[dict]:
    if not isinstance(items, list):
        return []
    rows = [item for item in items if isinstance(item, dict)]
    return sorted(rows, key=lambda item: item.get("order_index") or 0)


def hydrate_editor(editor: TemplateEditor, record: dict) -> TemplateEditor:
    """Replay a stored record into ``editor`` through its normal add operations.

    Persisted ids and field codes are re-asserted so that references in
    conditional logic keep resolving. The replay itself is not undoable and
    leaves the editor clean.
    """
    if not isinstance(record, dict):
        raise ValueError("record must be an object")
    editor.init_template(record)
    for section in _by_order(record.get("form_sections")):
        section_id = editor.add_section(section)
        for field in _by_order(section.get("form_fields")):
            editor.add_field(section_id, field)
    workflows = record.get("form_workflows")
    if isinstance(workflows, list) and workflows and isinstance(workflows[0], dict):
        editor.update_workflow(workflows[0])
    editor.select_section(None)
    editor.clear_history()
    editor.mark_saved()
    return editor


def export_template(editor: TemplateEditor) -> dict:
    """Read the editor into a nested record for the persistence layer."""
    record = editor.template or {}
    sections = []
    for section in editor.sections:
        section["form_fields"] = editor.fields_of_section(section["id"])
        sections.append(section)
    record["form_sections"] = sections
    workflow = editor.workflow
    record["form_workflows"] = [workflow] if workflow is not None else []
    return record
