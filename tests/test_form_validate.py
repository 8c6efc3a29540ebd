import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from form_validate import validate_template


def _template(**overrides) -> dict:
    base = {"name": "Daily Inspection", "form_code": "daily_inspection"}
    base.update(overrides)
    return base


def _section(section_id: str = "s1", **overrides) -> dict:
    base = {"id": section_id, "title": "Checks", "is_repeatable": False, "min_repeats": 1, "max_repeats": 10}
    base.update(overrides)
    return base


def _field(field_id: str, code: str, **overrides) -> dict:
    base = {"id": field_id, "form_section_id": "s1", "field_code": code, "label": code.title(), "field_type": "text"}
    base.update(overrides)
    return base


class TestValidateTemplate(unittest.TestCase):
    def test_valid_template_has_no_issues(self) -> None:
        issues = validate_template(_template(), [_section()], [_field("f1", "hazard")])
        self.assertEqual(issues, [])

    def test_empty_template_reports_everything(self) -> None:
        issues = validate_template({"name": "", "form_code": ""}, [], [])
        self.assertEqual(
            [i["code"] for i in issues],
            ["TEMPLATE_NAME_REQUIRED", "TEMPLATE_CODE_REQUIRED", "SECTIONS_REQUIRED", "FIELDS_REQUIRED"],
        )
        self.assertEqual(issues[0]["message"], "Form name is required")
        self.assertEqual(issues[0]["path"], "template.name")

    def test_whitespace_name_is_blank(self) -> None:
        issues = validate_template(_template(name="   "), [_section()], [_field("f1", "a")])
        self.assertEqual([i["code"] for i in issues], ["TEMPLATE_NAME_REQUIRED"])

    def test_missing_template_is_blank(self) -> None:
        issues = validate_template(None, [_section()], [_field("f1", "a")])
        self.assertEqual([i["code"] for i in issues], ["TEMPLATE_NAME_REQUIRED", "TEMPLATE_CODE_REQUIRED"])

    def test_duplicate_codes_reported_once_per_code(self) -> None:
        fields = [_field("f1", "a"), _field("f2", "a"), _field("f3", "a"), _field("f4", "b"), _field("f5", "b")]
        issues = validate_template(_template(), [_section()], fields)
        self.assertEqual([i["message"] for i in issues], ["Duplicate field code: a", "Duplicate field code: b"])

    def test_dangling_field_condition(self) -> None:
        fields = [_field("f1", "a", label="Dependent", conditional_logic={"field_id": "gone", "operator": "equals", "value": 1})]
        issues = validate_template(_template(), [_section()], fields)
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0]["code"], "FIELD_CONDITION_DANGLING")
        self.assertEqual(issues[0]["message"], 'Field "Dependent" references non-existent field in conditional logic')
        self.assertEqual(issues[0]["path"], "fields.f1.conditional_logic")

    def test_condition_pointing_at_other_section_is_fine(self) -> None:
        sections = [_section("s1"), _section("s2", title="Later")]
        fields = [
            _field("f1", "a"),
            _field("f2", "b", form_section_id="s2", conditional_logic={"field_id": "f1", "operator": "is_not_empty"}),
        ]
        self.assertEqual(validate_template(_template(), sections, fields), [])

    def test_malformed_condition_counts_as_dangling(self) -> None:
        fields = [_field("f1", "a", conditional_logic={"operator": "equals"}), _field("f2", "b", conditional_logic="f1")]
        issues = validate_template(_template(), [_section()], fields)
        self.assertEqual([i["code"] for i in issues], ["FIELD_CONDITION_DANGLING", "FIELD_CONDITION_DANGLING"])

    def test_dangling_section_condition(self) -> None:
        sections = [_section(title="Follow up", conditional_logic={"field_id": "gone", "operator": "equals", "value": "yes"})]
        issues = validate_template(_template(), sections, [_field("f1", "a")])
        self.assertEqual(
            [i["message"] for i in issues],
            ['Section "Follow up" references non-existent field in conditional logic'],
        )

    def test_unknown_field_type(self) -> None:
        issues = validate_template(_template(), [_section()], [_field("f1", "a", label="Odd", field_type="hologram")])
        self.assertEqual([i["code"] for i in issues], ["FIELD_TYPE_INVALID"])
        self.assertIn("hologram", issues[0]["message"])

    def test_repeat_bounds_checked_only_when_repeatable(self) -> None:
        fields = [_field("f1", "a")]
        flat = [_section(min_repeats=5, max_repeats=2)]
        self.assertEqual(validate_template(_template(), flat, fields), [])
        repeating = [_section(is_repeatable=True, min_repeats=5, max_repeats=2)]
        issues = validate_template(_template(), repeating, fields)
        self.assertEqual([i["code"] for i in issues], ["SECTION_REPEATS_INVALID"])

    def test_issue_order_is_stable(self) -> None:
        sections = [_section(conditional_logic={"field_id": "gone"})]
        fields = [_field("f1", "a"), _field("f2", "a", field_type="nope")]
        issues = validate_template(_template(form_code=""), sections, fields)
        self.assertEqual(
            [i["code"] for i in issues],
            ["TEMPLATE_CODE_REQUIRED", "FIELD_CODE_DUPLICATE", "SECTION_CONDITION_DANGLING", "FIELD_TYPE_INVALID"],
        )


if __name__ == "__main__":
    unittest.main()
