"""Whole-template validation for the form editor."""

from __future__ import annotations

from typing import Any, Dict, List


Issue = Dict[str, Any]


FIELD_TYPES = {
    "text",
    "textarea",
    "number",
    "date",
    "time",
    "datetime",
    "dropdown",
    "select",
    "radio",
    "checkbox",
    "checkbox_group",
    "multiselect",
    "signature",
    "multi_signature",
    "photo",
    "file",
    "gps",
    "worker_select",
    "jobsite_select",
    "equipment_select",
    "hazard_select",
    "hazard_multiselect",
    "task_select",
    "rating",
    "slider",
    "yes_no",
    "yes_no_na",
    "email",
    "phone",
    "currency",
    "body_diagram",
    "weather",
    "temperature",
    "hidden",
}


def _issue(code: str, message: str, path: str | None = None) -> Issue:
    return {"code": code, "message": message, "path": path}


def _blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def _dangling(logic: Any, field_ids: set) -> bool:
    if not logic:
        return False
    if not isinstance(logic, dict):
        return True
    return logic.get("field_id") not in field_ids


def validate_template(template: dict | None, sections: List[dict], fields: List[dict]) -> List[Issue]:
    """Collect every violation; nothing short-circuits.

    ``fields`` is the flat list of every field in the template, in any order.
    """
    issues: List[Issue] = []
    template = template or {}

    if _blank(template.get("name")):
        issues.append(_issue("TEMPLATE_NAME_REQUIRED", "Form name is required", "template.name"))
    if _blank(template.get("form_code")):
        issues.append(_issue("TEMPLATE_CODE_REQUIRED", "Form code is required", "template.form_code"))

    if not sections:
        issues.append(_issue("SECTIONS_REQUIRED", "At least one section is required", "sections"))
    if not fields:
        issues.append(_issue("FIELDS_REQUIRED", "At least one field is required", "fields"))

    seen: set = set()
    reported: List[str] = []
    for field in fields:
        code = field.get("field_code")
        if code in seen and code not in reported:
            reported.append(code)
        seen.add(code)
    for code in reported:
        issues.append(_issue("FIELD_CODE_DUPLICATE", f"Duplicate field code: {code}", "fields.field_code"))

    field_ids = {f.get("id") for f in fields}
    for field in fields:
        if _dangling(field.get("conditional_logic"), field_ids):
            issues.append(
                _issue(
                    "FIELD_CONDITION_DANGLING",
                    f'Field "{field.get("label")}" references non-existent field in conditional logic',
                    f"fields.{field.get('id')}.conditional_logic",
                )
            )

    for section in sections:
        if _dangling(section.get("conditional_logic"), field_ids):
            issues.append(
                _issue(
                    "SECTION_CONDITION_DANGLING",
                    f'Section "{section.get("title")}" references non-existent field in conditional logic',
                    f"sections.{section.get('id')}.conditional_logic",
                )
            )

    for field in fields:
        field_type = field.get("field_type")
        if field_type not in FIELD_TYPES:
            issues.append(
                _issue(
                    "FIELD_TYPE_INVALID",
                    f'Field "{field.get("label")}" has unknown type "{field_type}"',
                    f"fields.{field.get('id')}.field_type",
                )
            )

    for section in sections:
        if not section.get("is_repeatable"):
            continue
        min_repeats = section.get("min_repeats")
        max_repeats = section.get("max_repeats")
        if isinstance(min_repeats, int) and isinstance(max_repeats, int) and min_repeats > max_repeats:
            issues.append(
                _issue(
                    "SECTION_REPEATS_INVALID",
                    f'Section "{section.get("title")}" allows fewer repeats ({max_repeats}) than it requires ({min_repeats})',
                    f"sections.{section.get('id')}.max_repeats",
                )
            )

    return issues
