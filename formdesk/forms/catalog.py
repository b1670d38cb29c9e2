"""
Form catalog. Read-only registry of form definitions.

Definitions come from the built-ins below plus any JSON files in
FORM_CATALOG_PATH (validated on load; bad files are logged and skipped).
Field order in a definition is the order fields are collected in.
"""

import json
import logging
import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..core.config import get_settings
from ..core.errors import FormNotFound

logger = logging.getLogger(__name__)

FIELD_TYPES = {"text", "number", "date", "radio", "checkbox", "dropdown", "select", "email"}


class FieldDefinition(BaseModel):
    """One field of a form, exactly as the catalog defines it."""

    name: str
    type: str = "text"
    required: bool = True
    label: str = ""
    instruction: str = ""
    options: Optional[list[str]] = None
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None

    @field_validator("type")
    @classmethod
    def _known_type(cls, v: str) -> str:
        v = v.lower()
        if v not in FIELD_TYPES:
            raise ValueError(f"unsupported field type '{v}'")
        return v

    @property
    def display_label(self) -> str:
        return self.label or self.name


class FormSummary(BaseModel):
    id: str
    name: str
    description: str = ""


class FormDefinition(BaseModel):
    """An immutable catalog entry."""

    model_config = {"frozen": True}

    id: str
    name: str
    description: str = ""
    category: str = "general"
    fields: list[FieldDefinition] = Field(min_length=1)

    @field_validator("fields")
    @classmethod
    def _unique_names(cls, fields: list[FieldDefinition]) -> list[FieldDefinition]:
        seen = set()
        for f in fields:
            if f.name in seen:
                raise ValueError(f"duplicate field name '{f.name}'")
            seen.add(f.name)
        return fields

    def summary(self) -> FormSummary:
        return FormSummary(id=self.id, name=self.name, description=self.description)


# ── Built-in definitions ─────────────────────────────────────────────

_BUILTIN_FORMS: list[dict] = [
    {
        "id": "PAN001",
        "name": "PAN Card Application",
        "description": "Apply for a new Permanent Account Number (PAN) card.",
        "category": "identity",
        "fields": [
            {"name": "full_name", "type": "text", "required": True, "label": "Full Name",
             "instruction": "Enter your full name as per official documents."},
            {"name": "father_name", "type": "text", "required": True, "label": "Father's Name",
             "instruction": "Enter your father's full name."},
            {"name": "dob", "type": "date", "required": True, "label": "Date of Birth",
             "instruction": "DD/MM/YYYY."},
            {"name": "gender", "type": "radio", "required": True, "label": "Gender",
             "options": ["Male", "Female", "Other"], "instruction": "Select your gender."},
            {"name": "aadhaar_number", "type": "text", "required": True, "label": "Aadhaar Number",
             "instruction": "12-digit Aadhaar.", "pattern": r"^\d{12}$"},
            {"name": "mobile_number", "type": "text", "required": True, "label": "Mobile Number",
             "instruction": "10-digit mobile.", "pattern": r"^\d{10}$"},
            {"name": "address", "type": "text", "required": True, "label": "Address",
             "instruction": "Full residential address.", "min_length": 5},
            {"name": "declaration_consent", "type": "checkbox", "required": True,
             "label": "Declaration Consent", "instruction": "Confirm all info is true."},
        ],
    },
    {
        "id": "PSP001",
        "name": "Passport Application",
        "description": "Apply for a new Indian passport.",
        "category": "travel",
        "fields": [
            {"name": "first_name", "type": "text", "required": True, "label": "First Name",
             "instruction": "Please enter your first name as per your Aadhaar card."},
            {"name": "last_name", "type": "text", "required": True, "label": "Last Name",
             "instruction": "Please enter your last name as per your Aadhaar card."},
            {"name": "date_of_birth", "type": "date", "required": True, "label": "Date of Birth",
             "instruction": "Please enter your date of birth as per your Aadhaar card (DD/MM/YYYY)."},
            {"name": "address", "type": "text", "required": True, "label": "Address",
             "instruction": "Please enter your address as per your Aadhaar card."},
        ],
    },
    {
        "id": "DL001",
        "name": "Driving License Application",
        "description": "Apply for an Indian driving license.",
        "category": "transport",
        "fields": [
            {"name": "first_name", "type": "text", "required": True, "label": "First Name",
             "instruction": "Please enter your first name as per your Aadhaar card."},
            {"name": "last_name", "type": "text", "required": True, "label": "Last Name",
             "instruction": "Please enter your last name as per your Aadhaar card."},
            {"name": "date_of_birth", "type": "date", "required": True, "label": "Date of Birth",
             "instruction": "Please enter your date of birth as per your Aadhaar card (DD/MM/YYYY)."},
            {"name": "address", "type": "text", "required": True, "label": "Address",
             "instruction": "Please enter your address as per your Aadhaar card."},
            {"name": "insurance_number", "type": "text", "required": True, "label": "Insurance Number",
             "instruction": "Please enter your vehicle insurance number."},
            {"name": "insurance_expiry_date", "type": "date", "required": True,
             "label": "Insurance Expiry Date",
             "instruction": "Please enter your insurance expiry date (DD/MM/YYYY)."},
        ],
    },
    {
        "id": "INS001",
        "name": "Health Insurance Application",
        "description": "Apply for an individual health insurance policy.",
        "category": "insurance",
        "fields": [
            {"name": "full_name", "type": "text", "required": True, "label": "Full Name",
             "instruction": "Enter your full name."},
            {"name": "dob", "type": "date", "required": True, "label": "Date of Birth",
             "instruction": "DD/MM/YYYY."},
            {"name": "email", "type": "email", "required": True, "label": "Email Address",
             "instruction": "We send policy documents here."},
            {"name": "plan", "type": "dropdown", "required": True, "label": "Plan",
             "options": ["Basic", "Silver", "Gold"], "instruction": "Choose a coverage plan."},
            {"name": "nominee_name", "type": "text", "required": False, "label": "Nominee Name",
             "instruction": "Optional. The person who receives benefits."},
            {"name": "smoker", "type": "checkbox", "required": True, "label": "Smoker",
             "instruction": "Do you currently smoke? (yes/no)"},
        ],
    },
]


class FormCatalog:
    """Queryable, read-only registry of form definitions."""

    def __init__(self, forms: Optional[list[FormDefinition]] = None):
        self._forms: dict[str, FormDefinition] = {}
        for form in forms or []:
            self._add(form)

    def _add(self, form: FormDefinition) -> None:
        if form.id in self._forms:
            logger.warning("Form '%s' already in catalog, overwriting", form.id)
        self._forms[form.id] = form

    @classmethod
    def with_builtins(cls) -> "FormCatalog":
        return cls([FormDefinition.model_validate(f) for f in _BUILTIN_FORMS])

    def load_directory(self, path: str) -> int:
        """Load every *.json definition in a directory. Returns how many loaded."""
        directory = Path(path)
        if not directory.is_dir():
            logger.debug("Form catalog directory not found: %s", directory)
            return 0

        loaded = 0
        for file in sorted(directory.glob("*.json")):
            try:
                form = FormDefinition.model_validate(json.loads(file.read_text(encoding="utf-8")))
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.error("Skipping invalid form definition %s: %s", file.name, e)
                continue
            self._add(form)
            loaded += 1
        logger.info("Loaded %d form definitions from %s", loaded, directory)
        return loaded

    # ── Query interface ───────────────────────────────────────────

    def list_forms(self) -> list[FormSummary]:
        return [f.summary() for f in self._forms.values()]

    def get_form_by_id(self, form_id: str) -> FormDefinition:
        form = self._forms.get(form_id) or self._forms.get(form_id.strip().upper())
        if form is None:
            raise FormNotFound(form_id)
        return form

    def find_form(self, text: str) -> Optional[FormDefinition]:
        """
        Find a form referenced in free text, by id ("PAN001") or by name
        ("pan card", "passport"). Returns None when nothing or several match.
        """
        lowered = text.lower()
        for form_id, form in self._forms.items():
            if re.search(rf"\b{re.escape(form_id.lower())}\b", lowered):
                return form

        matches = []
        for form in self._forms.values():
            keywords = _name_keywords(form.name)
            if keywords and all(re.search(rf"\b{re.escape(k)}\b", lowered) for k in keywords):
                matches.append(form)
        if len(matches) == 1:
            return matches[0]
        return None

    def __len__(self) -> int:
        return len(self._forms)


_GENERIC_NAME_WORDS = {"application", "form", "card", "new", "individual", "the", "for", "a"}


def _name_keywords(name: str) -> list[str]:
    """Distinguishing words of a form name: 'PAN Card Application' -> ['pan']."""
    words = re.findall(r"[a-z0-9]+", name.lower())
    return [w for w in words if w not in _GENERIC_NAME_WORDS]


# ── Global catalog ───────────────────────────────────────────────────

_catalog: Optional[FormCatalog] = None


def get_catalog() -> FormCatalog:
    """Get or create the global form catalog."""
    global _catalog
    if _catalog is None:
        _catalog = FormCatalog.with_builtins()
        _catalog.load_directory(get_settings().form_catalog_path)
        logger.info("Form catalog ready: %d forms", len(_catalog))
    return _catalog
