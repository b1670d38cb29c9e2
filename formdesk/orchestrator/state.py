"""
Session state and the reducer table used to merge handler updates.

A session is a plain pydantic model persisted as JSON by the session store.
Handlers never write it directly: they return a partial update dict and the
state machine folds it in with merge_state().

Merge rules:
  - history: append-only. New turns go after prior turns; an update that
    echoes prior turns at their positions has that prefix skipped.
  - every other field: the update wins, but only if the key is present.
    An absent key never erases prior state; an explicit None does.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from ..forms.catalog import FieldDefinition, FormCatalog, FormDefinition

logger = logging.getLogger(__name__)


class FormStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Turn(BaseModel):
    """One side of a round-trip. Role is 'user' or 'assistant'."""

    role: str
    content: str
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def same_as(self, other: "Turn") -> bool:
        return (
            self.role == other.role
            and self.content == other.content
            and self.created_at == other.created_at
        )


class FieldValue(FieldDefinition):
    """
    A catalog field plus the user's answer.

    value is None until the field has been asked and answered. An optional
    field the user skipped holds "".
    """

    value: Optional[str] = None


class SessionState(BaseModel):
    session_id: str
    history: list[Turn] = Field(default_factory=list)
    current_node: Optional[str] = None
    last_node: Optional[str] = None
    awaiting_input: bool = False
    is_form_filling_started: bool = False
    form_id: Optional[str] = None
    form_name: Optional[str] = None
    form_fields: list[FieldValue] = Field(default_factory=list)
    form_status: FormStatus = FormStatus.NOT_STARTED
    current_field: Optional[str] = None
    last_field: Optional[str] = None
    is_form_filling_interrupted: bool = False
    is_form_ready: bool = False
    cached_form_structure: Optional[dict] = None
    last_submission_id: Optional[str] = None

    def to_record(self) -> dict:
        """Plain JSON-safe representation for the session store."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict) -> "SessionState":
        return cls.model_validate(record)


def new_session(session_id: str) -> SessionState:
    """A fresh session: empty history, all flags false, no active form."""
    return SessionState(session_id=session_id)


# ── Reducers ─────────────────────────────────────────────────────────

def append_turns(prior: list[Turn], update: list[Turn]) -> list[Turn]:
    """Concatenate new turns after prior ones, skipping an echoed prefix."""
    update = [t if isinstance(t, Turn) else Turn.model_validate(t) for t in update]
    if prior and len(update) >= len(prior):
        if all(p.same_as(u) for p, u in zip(prior, update)):
            update = update[len(prior):]
    return list(prior) + update


def update_wins(prior: Any, update: Any) -> Any:
    return update


REDUCERS: dict[str, Callable[[Any, Any], Any]] = {
    name: update_wins for name in SessionState.model_fields if name != "session_id"
}
REDUCERS["history"] = append_turns


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


def merge_state(prior: SessionState, update: dict) -> SessionState:
    """
    Fold a handler's partial update into the prior session.

    Returns a new SessionState; prior is not modified. Unknown keys are
    logged and ignored.
    """
    data = prior.model_dump()
    for key, value in update.items():
        reducer = REDUCERS.get(key)
        if reducer is None:
            logger.warning("Ignoring unknown state key '%s' in update", key)
            continue
        data[key] = _plain(reducer(getattr(prior, key), value))
    return SessionState.model_validate(data)


# ── Field helpers ────────────────────────────────────────────────────

def clone_fields(form: FormDefinition) -> list[FieldValue]:
    """Copy a form's field definitions, in catalog order, with values unset."""
    return [FieldValue(**f.model_dump()) for f in form.fields]


def field_by_name(fields: list[FieldValue], name: Optional[str]) -> Optional[FieldValue]:
    if not name:
        return None
    for f in fields:
        if f.name == name:
            return f
    return None


def is_outstanding(f: FieldValue) -> bool:
    """Never answered, or required and still blank."""
    if f.value is None:
        return True
    return f.required and not f.value.strip()


def next_field(fields: list[FieldValue]) -> Optional[FieldValue]:
    """First outstanding field in catalog order."""
    for f in fields:
        if is_outstanding(f):
            return f
    return None


def answered_count(fields: list[FieldValue]) -> int:
    return sum(1 for f in fields if not is_outstanding(f))


def with_value(fields: list[FieldValue], name: str, value: str) -> list[FieldValue]:
    """Return a copy of fields with one value replaced."""
    return [
        f.model_copy(update={"value": value}) if f.name == name else f.model_copy()
        for f in fields
    ]


def form_reset_update() -> dict:
    """Partial update that returns the session to 'no active form'."""
    return {
        "form_id": None,
        "form_name": None,
        "form_fields": [],
        "current_field": None,
        "last_field": None,
        "is_form_filling_started": False,
        "is_form_filling_interrupted": False,
        "is_form_ready": False,
        "form_status": FormStatus.NOT_STARTED,
        "awaiting_input": False,
        "cached_form_structure": None,
    }


# ── Invariants ───────────────────────────────────────────────────────

def check_invariants(session: SessionState, catalog: Optional[FormCatalog] = None) -> list[str]:
    """Return a description of every invariant the session violates."""
    problems = []

    if session.is_form_filling_started and session.is_form_ready:
        problems.append("collection and ready flags are both set")

    if session.is_form_filling_started:
        if not session.form_fields:
            problems.append("collection started without form fields")
        elif catalog is not None and session.form_id:
            try:
                expected = [f.name for f in catalog.get_form_by_id(session.form_id).fields]
            except LookupError:
                expected = None
            if expected is not None and [f.name for f in session.form_fields] != expected:
                problems.append("form fields are not in catalog order")

    if session.current_field:
        current = field_by_name(session.form_fields, session.current_field)
        if current is None:
            problems.append(f"current field '{session.current_field}' is not a form field")
        elif not is_outstanding(current):
            problems.append(f"current field '{session.current_field}' already has a value")

    if session.form_status == FormStatus.COMPLETED:
        missing = [f.name for f in session.form_fields if f.required and not (f.value or "").strip()]
        if missing:
            problems.append(f"form completed with required fields empty: {', '.join(missing)}")

    return problems
