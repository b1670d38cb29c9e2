"""
Document renderer. Turns a submitted {field: value} mapping into a PDF.

  - If PDF_TEMPLATES_PATH/<form_id>.pdf exists, its AcroForm widgets are
    filled by field name.
  - Otherwise a one-page summary document is generated.
Either way page one is stamped "SUBMITTED: <date> | ID: <submission id>".

Runs PyMuPDF in a worker thread, bounded by RENDER_TIMEOUT_SECONDS.
Controlled by FF_USE_PDF_RENDER.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..core.config import get_settings
from ..core.errors import AdapterError, AdapterTimeout
from ..forms.catalog import FormDefinition

logger = logging.getLogger(__name__)

TEXT_FONT = "helv"
TEXT_SIZE = 11
LINE_LEADING = 16
MAX_CHARS_PER_LINE = 80
TRUTHY = ("yes", "y", "true", "1", "checked", "agree", "i agree")


def template_path(form_id: str) -> Path:
    return Path(get_settings().pdf_templates_path) / f"{form_id}.pdf"


def wrap_text(s: str, width: int = MAX_CHARS_PER_LINE) -> list[str]:
    words, lines, cur = s.split(), [], []
    for w in words:
        candidate = " ".join(cur + [w])
        if len(candidate) <= width:
            cur.append(w)
        else:
            if cur:
                lines.append(" ".join(cur))
            cur = [w]
    if cur:
        lines.append(" ".join(cur))
    return lines or [""]


def _fill_widgets(doc, values: dict) -> int:
    """Fill AcroForm widgets whose field name matches a key. Returns count filled."""
    import fitz

    filled = 0
    for page in doc:
        for widget in page.widgets() or []:
            value = values.get(widget.field_name)
            if value in (None, ""):
                continue
            is_yes = str(value).strip().lower() in TRUTHY
            if widget.field_type in (fitz.PDF_WIDGET_TYPE_CHECKBOX, fitz.PDF_WIDGET_TYPE_RADIOBUTTON):
                widget.field_value = widget.on_state() if is_yes else "Off"
            else:
                widget.field_value = str(value)
            widget.update()
            filled += 1
    return filled


def _summary_document(form_name: str, values: dict, labels: dict):
    import fitz

    doc = fitz.open()
    page = doc.new_page()
    y = 90
    page.insert_text((72, y), form_name, fontname=TEXT_FONT, fontsize=18)
    y += LINE_LEADING * 2

    for name, value in values.items():
        if y > page.rect.height - 72:
            page = doc.new_page()
            y = 72
        label = labels.get(name, name)
        page.insert_text((72, y), f"{label}:", fontname=TEXT_FONT, fontsize=TEXT_SIZE)
        y += LINE_LEADING
        for line in wrap_text(str(value) if value else "Not provided"):
            page.insert_text((90, y), line, fontname=TEXT_FONT, fontsize=TEXT_SIZE)
            y += LINE_LEADING
        y += 4
    return doc


def _stamp(doc, submission_id: str) -> None:
    page = doc[0]
    stamp = f"SUBMITTED: {datetime.now(timezone.utc):%d/%m/%Y} | ID: {submission_id}"
    page.insert_text(
        (page.rect.width - 300, 40),
        stamp,
        fontname=TEXT_FONT,
        fontsize=10,
        color=(0.8, 0, 0),
    )


def render_sync(
    form_id: str,
    field_values: dict,
    submission_id: str,
    form: Optional[FormDefinition] = None,
) -> bytes:
    import fitz

    labels = {f.name: f.display_label for f in form.fields} if form else {}
    form_name = form.name if form else form_id

    path = template_path(form_id)
    if path.is_file():
        doc = fitz.open(path)
        filled = _fill_widgets(doc, field_values)
        logger.info("Filled %d widgets in template %s", filled, path.name)
        if filled == 0:
            # Template without matching widgets: fall back to a generated summary
            doc.close()
            doc = _summary_document(form_name, field_values, labels)
    else:
        logger.info("No PDF template for %s, generating summary document", form_id)
        doc = _summary_document(form_name, field_values, labels)

    try:
        _stamp(doc, submission_id)
        return doc.tobytes(garbage=3, deflate=True)
    finally:
        doc.close()


async def render(
    form_id: str,
    field_values: dict,
    submission_id: str,
    form: Optional[FormDefinition] = None,
) -> bytes:
    """
    Render a submission to PDF bytes.
    Raises AdapterTimeout / AdapterError; callers treat both as non-fatal.
    """
    timeout = get_settings().render_timeout_seconds
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(render_sync, form_id, field_values, submission_id, form),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        raise AdapterTimeout("render", f"render timed out after {timeout:.0f}s") from e
    except AdapterError:
        raise
    except Exception as e:
        raise AdapterError("render", str(e)) from e
