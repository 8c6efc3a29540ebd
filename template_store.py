"""In-memory template store with per-save version history."""

from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List

from formkit.fingerprint import template_fingerprint


logger = logging.getLogger("formkit.store")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class MemoryTemplateStore:
    def __init__(self) -> None:
        self._templates: Dict[str, dict] = {}
        self._versions: Dict[str, List[dict]] = {}

    def get_template(self, template_id: str) -> dict:
        record = self._templates.get(template_id)
        if record is None:
            raise KeyError("Template not found")
        return copy.deepcopy(record)

    def list_templates(self) -> list[dict]:
        items = []
        for template_id, record in self._templates.items():
            items.append(
                {
                    "id": template_id,
                    "name": record.get("name"),
                    "form_code": record.get("form_code"),
                    "version": record.get("version"),
                    "is_active": record.get("is_active"),
                    "section_count": len(record.get("form_sections") or []),
                    "updated_at": record.get("updated_at"),
                    "fingerprint": record.get("fingerprint"),
                }
            )
        return sorted(items, key=lambda r: r.get("updated_at") or "", reverse=True)

    def list_versions(self, template_id: str) -> list[dict]:
        if template_id not in self._templates:
            raise KeyError("Template not found")
        return [
            {k: v for k, v in entry.items() if k != "record"}
            for entry in self._versions.get(template_id, [])
        ]

    def save_template(self, record: dict, saved_by: str | None = None) -> dict:
        """Store ``record`` and return the saved copy with ``changed`` set.

        A record without an id gets one. A save whose content fingerprint
        matches the latest version is kept but adds no version entry.
        """
        if not isinstance(record, dict):
            raise ValueError("record must be an object")
        record = copy.deepcopy(record)
        template_id = record.get("id") or str(uuid.uuid4())
        record["id"] = template_id
        for section in record.get("form_sections") or []:
            section["form_template_id"] = template_id
        for workflow in record.get("form_workflows") or []:
            workflow["form_template_id"] = template_id

        now = _now()
        existing = self._templates.get(template_id)
        record["created_at"] = existing.get("created_at") if existing else record.get("created_at") or now
        record["updated_at"] = now
        fingerprint = template_fingerprint({k: v for k, v in record.items() if k != "fingerprint"})
        record["fingerprint"] = fingerprint

        versions = self._versions.setdefault(template_id, [])
        changed = not versions or versions[0]["fingerprint"] != fingerprint
        if changed:
            versions.insert(
                0,
                {
                    "version_id": str(uuid.uuid4()),
                    "fingerprint": fingerprint,
                    "saved_at": now,
                    "saved_by": saved_by,
                    "record": copy.deepcopy(record),
                },
            )
        self._templates[template_id] = record
        logger.info("template_saved template_id=%s changed=%s fingerprint=%s", template_id, changed, fingerprint)
        saved = copy.deepcopy(record)
        saved["changed"] = changed
        return saved

    def publish_template(self, template_id: str) -> dict:
        record = self._templates.get(template_id)
        if record is None:
            raise KeyError("Template not found")
        record = copy.deepcopy(record)
        record["is_active"] = True
        record["version"] = (record.get("version") or 0) + 1
        record["updated_at"] = _now()
        record["published_at"] = record["updated_at"]
        record["fingerprint"] = template_fingerprint({k: v for k, v in record.items() if k != "fingerprint"})
        self._templates[template_id] = record
        logger.info("template_published template_id=%s version=%s", template_id, record["version"])
        return copy.deepcopy(record)

    def delete_template(self, template_id: str) -> bool:
        if template_id not in self._templates:
            return False
        del self._templates[template_id]
        self._versions.pop(template_id, None)
        logger.info("template_deleted template_id=%s", template_id)
        return True
