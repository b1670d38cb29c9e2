"""
Form catalog tools: list forms, fetch a form's structure, start an application.

Structures shown to the user are always rendered from the catalog
(ToolResult.display), so the model can never add, drop or rename a field.
"""

from pydantic import BaseModel, Field, field_validator

from ..core.errors import FormNotFound
from ..forms.catalog import FormDefinition, get_catalog
from ..forms.presentation import (
    format_form_list,
    format_form_structure,
    format_start,
    structure_payload,
)
from ..orchestrator.state import FormStatus, clone_fields
from .registry import ToolResult, ToolRisk, tool


class ListFormsInput(BaseModel):
    pass


class FormIdInput(BaseModel):
    form_id: str = Field(description="Catalog form ID, e.g. 'PAN001'. Never guess: use list_forms first.")

    @field_validator("form_id")
    @classmethod
    def _normalize(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("form_id must not be empty")
        return v


def begin_application(form: FormDefinition) -> ToolResult:
    """Session update that starts field collection on a form."""
    fields = clone_fields(form)
    first = fields[0]
    return ToolResult(
        content=f"Started application for {form.id}. First field: {first.name}.",
        display=format_start(form, first),
        update={
            "form_id": form.id,
            "form_name": form.name,
            "form_fields": fields,
            "current_field": first.name,
            "last_field": None,
            "is_form_filling_started": True,
            "is_form_filling_interrupted": False,
            "is_form_ready": False,
            "form_status": FormStatus.IN_PROGRESS,
            "awaiting_input": True,
            "cached_form_structure": structure_payload(form),
        },
    )


def select_form(form: FormDefinition) -> ToolResult:
    """Show a form's exact structure and remember it as the selected form."""
    return ToolResult(
        content=f"Showed the user the structure of {form.id} and asked whether to proceed.",
        display=format_form_structure(form),
        update={
            "form_id": form.id,
            "form_name": form.name,
            "awaiting_input": True,
            "cached_form_structure": structure_payload(form),
        },
    )


@tool(
    name="list_forms",
    description=(
        "List every form the user can fill out, with its form ID and description. "
        "Use when the user asks what forms exist or is unsure which form they need."
    ),
    input_model=ListFormsInput,
)
async def list_forms(args: ListFormsInput, **kwargs) -> ToolResult:
    forms = get_catalog().list_forms()
    return ToolResult(
        content="Listed forms: " + ", ".join(f"{f.id} ({f.name})" for f in forms),
        display=format_form_list(forms),
    )


@tool(
    name="get_form_structure",
    description=(
        "Fetch the exact field structure of one form by its form ID and show it to the user. "
        "Use when the user asks what a form needs or names a form they want. "
        "The structure is shown to the user for you. Do not restate the fields."
    ),
    input_model=FormIdInput,
)
async def get_form_structure(args: FormIdInput, session=None, **kwargs) -> ToolResult:
    cached = session.cached_form_structure if session is not None else None
    try:
        form = get_catalog().get_form_by_id(args.form_id)
    except FormNotFound:
        if cached and cached.get("id") == args.form_id:
            form = FormDefinition.model_validate(cached)
        else:
            return ToolResult(content=f"Error: no form with ID '{args.form_id}'. Use list_forms to see valid IDs.")
    return select_form(form)


@tool(
    name="start_application",
    description=(
        "Start filling out a form. Only call this after the user has explicitly confirmed "
        "they want to begin (e.g. 'yes', 'start', 'let's do it')."
    ),
    input_model=FormIdInput,
    risk=ToolRisk.WRITE,
)
async def start_application(args: FormIdInput, **kwargs) -> ToolResult:
    try:
        form = get_catalog().get_form_by_id(args.form_id)
    except FormNotFound:
        return ToolResult(content=f"Error: no form with ID '{args.form_id}'. Use list_forms to see valid IDs.")
    return begin_application(form)
