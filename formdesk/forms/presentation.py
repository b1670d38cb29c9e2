"""
Deterministic text for forms: listings, structures, questions, summaries.

Anything that shows a form's fields to the user is built here from catalog
data, never from model output. Handlers fall back to these when the model
is unavailable.
"""

from typing import Optional

from .catalog import FieldDefinition, FormDefinition, FormSummary

YES_WORDS = {"yes", "y", "true", "agree", "i agree", "accept", "confirm", "confirmed", "ok", "okay"}
NO_WORDS = {"no", "n", "false", "disagree", "decline"}


def format_form_list(forms: list[FormSummary]) -> str:
    if not forms:
        return "There are no forms available right now."
    lines = []
    for f in forms:
        line = f"- **{f.name}** (Form ID: {f.id})"
        if f.description:
            line += f": {f.description}"
        lines.append(line)
    return (
        "Here are the forms I can help you fill out:\n\n"
        + "\n".join(lines)
        + "\n\nTell me which one you'd like to start, by name or form ID."
    )


def describe_field(field: FieldDefinition) -> str:
    desc = f"- **{field.display_label}** ({field.type}, {'required' if field.required else 'optional'})"
    if field.instruction:
        desc += f": {field.instruction}"
    if field.options:
        desc += f" Options: {', '.join(field.options)}"
    return desc


def format_form_structure(form: FormDefinition) -> str:
    fields = "\n".join(describe_field(f) for f in form.fields)
    return (
        f"Here's the structure of the {form.name} (Form ID: {form.id}):\n\n"
        f"{fields}\n\n"
        "Would you like to proceed with filling out this form?"
    )


def structure_payload(form: FormDefinition) -> dict:
    """The cached, JSON-safe form structure kept on the session."""
    return {
        "id": form.id,
        "name": form.name,
        "fields": [f.model_dump(exclude_none=True) for f in form.fields],
    }


def format_question(field: FieldDefinition) -> str:
    """Fallback question when the model can't phrase one."""
    question = f"Please provide your **{field.display_label}**."
    if field.instruction:
        question += f" {field.instruction}"
    if field.options:
        question += f" (Options: {', '.join(field.options)})"
    elif field.type == "checkbox":
        question += " (yes/no)"
    if not field.required:
        question += " This one is optional, say 'skip' to leave it blank."
    return question


def display_value(field: FieldDefinition, value: Optional[str]) -> str:
    if field.type == "checkbox":
        return "Yes" if (value or "").strip().lower() in YES_WORDS else "No"
    return value or "Not provided"


def format_summary(form_name: str, fields: list) -> str:
    """Review text shown when collection finishes. fields are FieldValue records."""
    lines = [f"- **{f.display_label}:** {display_value(f, f.value)}" for f in fields]
    return (
        f"Thanks! Here's a summary of your {form_name}:\n\n"
        + "\n".join(lines)
        + "\n\nShall I submit it? Reply 'yes' to submit, or tell me what to change."
    )


def format_start(form: FormDefinition, first: FieldDefinition) -> str:
    fields = "\n".join(describe_field(f) for f in form.fields)
    return (
        f"Great, let's fill out the {form.name}. I'll ask for these fields, one at a time:\n\n"
        f"{fields}\n\n{format_question(first)}"
    )
