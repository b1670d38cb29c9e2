"""
Answer validation for form fields.

validate(field, raw) returns (value, None) with the normalized value to
store, or (None, message) explaining what's wrong.
"""

import re
from datetime import datetime
from typing import Optional

from ...forms.catalog import FieldDefinition
from ...forms.presentation import NO_WORDS, YES_WORDS

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")
DATE_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%Y-%m-%d", "%d %B %Y", "%d %b %Y")
OPTION_TYPES = {"radio", "dropdown", "select"}


def _norm(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip().lower())


def _match_option(options: list[str], raw: str) -> Optional[str]:
    wanted = _norm(raw)
    for option in options:
        if _norm(option) == wanted:
            return option
    if wanted.isdigit() and 1 <= int(wanted) <= len(options):
        return options[int(wanted) - 1]
    prefixed = [o for o in options if _norm(o).startswith(wanted)]
    if wanted and len(prefixed) == 1:
        return prefixed[0]
    return None


def _parse_date(raw: str) -> Optional[str]:
    text = raw.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime("%d/%m/%Y")
        except ValueError:
            continue
    return None


def validate(field: FieldDefinition, raw: str) -> tuple[Optional[str], Optional[str]]:
    value = (raw or "").strip()
    label = field.display_label
    if field.type != "text":
        # "Male?" or "15/08/1990?" is a hesitant answer, not a question
        value = value.rstrip("?!").strip()
    if not value:
        return None, f"I didn't catch your {label}."

    if field.options and field.type in OPTION_TYPES:
        option = _match_option(field.options, value)
        if option is None:
            return None, f"{label} must be one of: {', '.join(field.options)}."
        return option, None

    if field.type == "checkbox":
        normalized = _norm(value).rstrip(".!")
        if normalized in YES_WORDS:
            return "yes", None
        if normalized in NO_WORDS:
            return "no", None
        return None, f"Please answer yes or no for {label}."

    if field.type == "date":
        parsed = _parse_date(value)
        if parsed is None:
            return None, f"{label} should be a valid date in DD/MM/YYYY format."
        value = parsed

    if field.type == "email" and not EMAIL_RE.match(value):
        return None, "That email address doesn't look valid. Mind checking it?"

    if field.type == "number" and not NUMBER_RE.match(value.replace(",", "")):
        return None, f"{label} should be a number."

    if field.pattern:
        if not re.fullmatch(field.pattern, value):
            compact = re.sub(r"[\s-]", "", value)
            if not re.fullmatch(field.pattern, compact):
                hint = f" ({field.instruction})" if field.instruction else ""
                return None, f"That doesn't look like a valid {label}{hint}."
            value = compact

    if field.min_length is not None and len(value) < field.min_length:
        return None, f"{label} should be at least {field.min_length} characters."
    if field.max_length is not None and len(value) > field.max_length:
        return None, f"{label} should be at most {field.max_length} characters."

    return value, None
