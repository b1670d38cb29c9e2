"""Unit tests for the form catalog and its deterministic presentation."""

import json

import pytest
from pydantic import ValidationError

from formdesk.core.errors import FormNotFound
from formdesk.forms.catalog import FormCatalog, FormDefinition, get_catalog
from formdesk.forms.presentation import (
    display_value,
    format_form_list,
    format_form_structure,
    format_question,
    format_summary,
)
from formdesk.orchestrator.state import clone_fields, with_value


class TestFormCatalog:
    def test_builtins_listed(self, forms):
        ids = [f.id for f in forms.list_forms()]
        assert ids == ["PAN001", "PSP001", "DL001", "INS001"]

    def test_get_form_by_id_is_case_insensitive(self, forms):
        assert forms.get_form_by_id("pan001").name == "PAN Card Application"

    def test_unknown_form_raises(self, forms):
        with pytest.raises(FormNotFound):
            forms.get_form_by_id("NOPE01")

    def test_pan_field_order(self, forms):
        names = [f.name for f in forms.get_form_by_id("PAN001").fields]
        assert names == [
            "full_name", "father_name", "dob", "gender",
            "aadhaar_number", "mobile_number", "address", "declaration_consent",
        ]

    def test_definitions_are_immutable(self, forms):
        form = forms.get_form_by_id("PAN001")
        with pytest.raises(ValidationError):
            form.name = "Changed"

    def test_duplicate_field_names_rejected(self):
        with pytest.raises(ValidationError):
            FormDefinition(id="X1", name="X", fields=[{"name": "a"}, {"name": "a"}])

    def test_unsupported_field_type_rejected(self):
        with pytest.raises(ValidationError):
            FormDefinition(id="X1", name="X", fields=[{"name": "a", "type": "signature"}])

    @pytest.mark.parametrize("text,expected", [
        ("I want to fill PAN001", "PAN001"),
        ("help me apply for a passport", "PSP001"),
        ("I need a pan card", "PAN001"),
        ("driving license please", "DL001"),
        ("health insurance", "INS001"),
        ("I need an application form", None),
        ("hello there", None),
    ])
    def test_find_form(self, forms, text, expected):
        form = forms.find_form(text)
        assert (form.id if form else None) == expected

    def test_load_directory_skips_invalid_files(self, tmp_path):
        (tmp_path / "good.json").write_text(json.dumps({
            "id": "VOT001", "name": "Voter ID Application",
            "fields": [{"name": "full_name", "label": "Full Name"}],
        }))
        (tmp_path / "bad.json").write_text("{not json")
        (tmp_path / "empty.json").write_text(json.dumps({"id": "E1", "name": "Empty", "fields": []}))

        catalog = FormCatalog.with_builtins()
        assert catalog.load_directory(str(tmp_path)) == 1
        assert catalog.get_form_by_id("VOT001").fields[0].type == "text"
        assert len(catalog) == 5

    def test_global_catalog_reads_configured_directory(self, isolated_env):
        forms_dir = isolated_env / "forms"
        forms_dir.mkdir()
        (forms_dir / "extra.json").write_text(json.dumps({
            "id": "GST001", "name": "GST Registration", "fields": [{"name": "pan"}],
        }))
        assert get_catalog().get_form_by_id("GST001").name == "GST Registration"


class TestPresentation:
    def test_form_list(self, forms):
        text = format_form_list(forms.list_forms())
        assert "**PAN Card Application** (Form ID: PAN001)" in text
        assert "Passport Application" in text

    def test_empty_form_list(self):
        assert "no forms" in format_form_list([])

    def test_structure_lists_every_field_in_order(self, forms):
        form = forms.get_form_by_id("PAN001")
        text = format_form_structure(form)
        positions = [text.index(f.display_label) for f in form.fields]
        assert positions == sorted(positions)
        assert text.startswith("Here's the structure of the PAN Card Application (Form ID: PAN001)")
        assert text.endswith("Would you like to proceed with filling out this form?")

    def test_question_mentions_options(self, forms):
        gender = forms.get_form_by_id("PAN001").fields[3]
        assert "(Options: Male, Female, Other)" in format_question(gender)

    def test_optional_question_offers_skip(self, forms):
        nominee = forms.get_form_by_id("INS001").fields[4]
        assert "skip" in format_question(nominee)

    def test_checkbox_display(self, forms):
        consent = forms.get_form_by_id("PAN001").fields[-1]
        assert display_value(consent, "yes") == "Yes"
        assert display_value(consent, "no") == "No"

    def test_summary_shows_every_value(self, forms):
        fields = with_value(clone_fields(forms.get_form_by_id("PSP001")), "first_name", "John")
        text = format_summary("Passport Application", fields)
        assert "**First Name:** John" in text
        assert "**Last Name:** Not provided" in text
        assert "Shall I submit it?" in text
