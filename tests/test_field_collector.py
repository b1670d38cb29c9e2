"""Tests for answer validation and the field collector handler."""

import pytest

from formdesk.agents.field_collector.handler import (
    FieldCollectorHandler,
    is_cancel,
    match_correction,
    resolve_field,
)
from formdesk.agents.field_collector.validation import validate
from formdesk.forms.catalog import FieldDefinition
from formdesk.orchestrator.state import FormStatus, field_by_name, merge_state


def _value(session, update, name):
    return field_by_name(merge_state(session, update).form_fields, name).value


class TestValidate:
    def test_text_is_trimmed(self):
        assert validate(FieldDefinition(name="n"), "  John Doe ") == ("John Doe", None)

    def test_blank_is_rejected(self):
        value, error = validate(FieldDefinition(name="n", label="Name"), "   ")
        assert value is None
        assert "Name" in error

    @pytest.mark.parametrize("raw,expected", [
        ("male", "Male"),
        ("FEMALE", "Female"),
        ("2", "Female"),
        ("oth", "Other"),
    ])
    def test_options(self, raw, expected):
        field = FieldDefinition(name="g", type="radio", options=["Male", "Female", "Other"])
        assert validate(field, raw) == (expected, None)

    def test_unknown_option(self):
        field = FieldDefinition(name="g", type="radio", label="Gender", options=["Male", "Female", "Other"])
        value, error = validate(field, "robot")
        assert value is None
        assert "Male, Female, Other" in error

    @pytest.mark.parametrize("raw,expected", [
        ("yes", "yes"), ("I agree", "yes"), ("Yes.", "yes"), ("no", "no"),
    ])
    def test_checkbox(self, raw, expected):
        assert validate(FieldDefinition(name="c", type="checkbox"), raw) == (expected, None)

    @pytest.mark.parametrize("raw", ["15/08/1990", "15-08-1990", "1990-08-15", "15 August 1990"])
    def test_dates_normalized(self, raw):
        assert validate(FieldDefinition(name="d", type="date"), raw) == ("15/08/1990", None)

    def test_invalid_date(self):
        value, error = validate(FieldDefinition(name="d", type="date"), "31/02/1990")
        assert value is None
        assert "DD/MM/YYYY" in error

    def test_email(self):
        field = FieldDefinition(name="e", type="email")
        assert validate(field, "john@example.com") == ("john@example.com", None)
        assert validate(field, "john@")[0] is None

    def test_pattern_tolerates_spaces(self):
        field = FieldDefinition(name="a", pattern=r"^\d{12}$")
        assert validate(field, "1234 5678 9012") == ("123456789012", None)
        assert validate(field, "12345")[0] is None

    def test_min_length(self):
        field = FieldDefinition(name="addr", min_length=5)
        assert validate(field, "abc")[0] is None


class TestTurnHelpers:
    def test_resolve_field_by_label_or_name(self, started_session):
        fields = started_session("PAN001").form_fields
        assert resolve_field(fields, "mobile").name == "mobile_number"
        assert resolve_field(fields, "Father's Name").name == "father_name"
        assert resolve_field(fields, "date of birth").name == "dob"
        assert resolve_field(fields, "name") is None  # ambiguous

    def test_match_correction(self, started_session):
        fields = started_session("PAN001").form_fields
        target, value = match_correction(fields, "change my mobile number to 9123456789")
        assert target.name == "mobile_number"
        assert value == "9123456789"
        target, value = match_correction(fields, "actually my address is 5 Park Road, Pune")
        assert target.name == "address"
        assert match_correction(fields, "John Doe") is None

    @pytest.mark.parametrize("text", ["cancel", "Cancel the application", "stop", "never mind", "start over"])
    def test_cancel_phrases(self, text):
        assert is_cancel(text)

    def test_answers_are_not_cancel(self):
        assert not is_cancel("Stop Street 4, Mumbai")


class TestFieldCollector:
    @pytest.fixture
    def handler(self):
        return FieldCollectorHandler()

    async def test_records_answer_and_asks_next(self, handler, started_session):
        session = started_session("PAN001")
        result = await handler.handle("John Doe", session)

        assert _value(session, result.update, "full_name") == "John Doe"
        assert result.update["current_field"] == "father_name"
        assert result.update["last_field"] == "full_name"
        assert result.update["form_status"] == FormStatus.IN_PROGRESS
        assert "Father's Name" in result.response

    async def test_invalid_answer_reasks_without_update(self, handler, started_session):
        session = started_session(
            "PAN001", full_name="John Doe", father_name="Richard Doe", dob="15/08/1990", gender="Male",
        )
        result = await handler.handle("12345", session)

        assert result.update == {}
        assert "Aadhaar Number" in result.response
        assert result.metadata["invalid"] == "aadhaar_number"

    async def test_last_answer_completes_form(self, handler, ready_session):
        session = merge_state(ready_session, {
            "form_fields": [
                f.model_copy(update={"value": None}) if f.name == "declaration_consent" else f
                for f in ready_session.form_fields
            ],
            "current_field": "declaration_consent",
            "is_form_filling_started": True,
            "is_form_ready": False,
            "form_status": FormStatus.IN_PROGRESS,
        })
        result = await handler.handle("yes", session)

        merged = merge_state(session, result.update)
        assert merged.is_form_ready
        assert not merged.is_form_filling_started
        assert merged.current_field is None
        assert merged.form_status == FormStatus.COMPLETED
        assert "Shall I submit it?" in result.response
        assert "12 Main Street, Mumbai" in result.response

    async def test_correction_of_earlier_field(self, handler, started_session):
        session = started_session("PAN001", full_name="John Doe")
        result = await handler.handle("change my full name to Jane Doe", session)

        assert _value(session, result.update, "full_name") == "Jane Doe"
        assert "current_field" not in result.update
        assert "Updated your Full Name to Jane Doe" in result.response
        assert "Father's Name" in result.response

    async def test_correction_of_field_not_reached(self, handler, started_session):
        session = started_session("PAN001", full_name="John Doe")
        result = await handler.handle("change my address to 5 Park Road", session)

        assert result.update == {}
        assert "haven't reached Address" in result.response

    async def test_invalid_correction_keeps_old_value(self, handler, started_session):
        session = started_session(
            "PAN001", full_name="John Doe", father_name="Richard Doe", dob="15/08/1990",
            gender="Male", aadhaar_number="123456789012",
        )
        result = await handler.handle("change my aadhaar number to 42", session)

        assert result.update == {}
        assert result.metadata["invalid"] == "aadhaar_number"

    async def test_cancel_resets_form(self, handler, started_session):
        session = started_session("PAN001", full_name="John Doe")
        result = await handler.handle("cancel", session)

        merged = merge_state(session, result.update)
        assert merged.form_id is None
        assert merged.form_fields == []
        assert not merged.is_form_filling_started
        assert "cancelled" in result.response

    async def test_skip_required_field_is_refused(self, handler, started_session):
        result = await handler.handle("skip", started_session("PAN001"))

        assert result.update == {}
        assert "required" in result.response

    async def test_skip_optional_field(self, handler, started_session):
        session = started_session(
            "INS001", full_name="John Doe", dob="15/08/1990", email="john@example.com", plan="Gold",
        )
        assert session.current_field == "nominee_name"
        result = await handler.handle("skip", session)

        assert _value(session, result.update, "nominee_name") == ""
        assert result.update["current_field"] == "smoker"

    async def test_interruption_is_answered_then_field_reasked(self, handler, started_session, llm_offline):
        llm_offline.complete.side_effect = ["INTERRUPTION", "You need a proof of identity and address."]
        session = started_session("PAN001")
        result = await handler.handle("What documents do I need for this?", session)

        assert result.update["is_form_filling_interrupted"] is True
        assert "form_fields" not in result.update
        assert "proof of identity" in result.response
        assert "back to your PAN Card Application" in result.response
        assert "**Full Name**" in result.response

    async def test_question_counts_as_answer_when_model_is_down(self, handler, started_session):
        session = started_session("PAN001")
        result = await handler.handle("John Doe?", session)
        assert _value(session, result.update, "full_name") == "John Doe?"

    async def test_valid_structured_answer_never_interrupts(self, handler, started_session, llm_offline):
        llm_offline.complete.side_effect = None
        llm_offline.complete.return_value = "INTERRUPTION"
        session = started_session("PAN001", full_name="John Doe", father_name="Richard Doe", dob="15/08/1990")
        result = await handler.handle("Male?", session)

        assert result.metadata["turn"] == "answer"
        assert _value(session, result.update, "gender") == "Male"

    async def test_repair_resumes_at_first_gap(self, handler, started_session):
        session = started_session("PAN001", full_name="John Doe")
        broken = merge_state(session, {"current_field": "full_name"})
        result = await handler.handle("anything", broken)

        assert result.update["current_field"] == "father_name"
        assert result.metadata["repair"] == "resume"

    async def test_repair_without_fields_resets(self, handler, started_session):
        broken = merge_state(started_session("PAN001"), {"form_fields": [], "current_field": "full_name"})
        result = await handler.handle("anything", broken)

        assert merge_state(broken, result.update).form_id is None
        assert result.metadata["repair"] == "reset"

    async def test_model_question_used_when_available(self, handler, started_session, llm_offline):
        llm_offline.complete.side_effect = None
        llm_offline.complete.return_value = "Thanks! What is your father's name?"
        result = await handler.handle("John Doe", started_session("PAN001"))
        assert result.response == "Thanks! What is your father's name?"
