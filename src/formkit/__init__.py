"""formkit kernel utilities."""

from .field_codes import DEFAULT_CODE, field_code_for, new_id, slugify_label, unique_code
from .fingerprint import FingerprintTypeError, canonical_dumps, template_fingerprint

__all__ = [
    "DEFAULT_CODE",
    "FingerprintTypeError",
    "canonical_dumps",
    "field_code_for",
    "new_id",
    "slugify_label",
    "template_fingerprint",
    "unique_code",
]
