"""Identifier and field-code generation."""

from __future__ import annotations

import re
import uuid
from typing import Iterable


DEFAULT_CODE = "field"
MAX_CODE_LENGTH = 30

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def new_id() -> str:
    return str(uuid.uuid4())


def slugify_label(label: str | None) -> str:
    """Lower-case slug of a label, capped at MAX_CODE_LENGTH.

    Runs of anything outside ``[a-z0-9]`` collapse to one underscore and
    leading/trailing underscores are trimmed before the cap, so a cut can
    leave one trailing underscore. Returns ``""`` when nothing
    usable is left.
    """
    if not isinstance(label, str):
        return ""
    slug = _NON_ALNUM.sub("_", label.lower()).strip("_")
    return slug[:MAX_CODE_LENGTH]


def unique_code(code: str, existing_codes: Iterable[str]) -> str:
    taken = existing_codes if isinstance(existing_codes, (set, frozenset)) else set(existing_codes)
    if code not in taken:
        return code
    counter = 1
    while f"{code}_{counter}" in taken:
        counter += 1
    return f"{code}_{counter}"


def field_code_for(label: str | None, existing_codes: Iterable[str]) -> str:
    """Return a code for ``label`` that does not collide with ``existing_codes``.

    Pure: ``existing_codes`` is only read, so callers may generate codes
    speculatively and decide afterwards whether to keep them.
    """
    return unique_code(slugify_label(label) or DEFAULT_CODE, existing_codes)
