"""Tests for intent routing and its override priority."""

import pytest

from formdesk.core.flags import get_flags
from formdesk.orchestrator.router import (
    FIELD_COLLECTOR,
    GENERAL_ASSISTANT,
    STATUS_TRACKER,
    SUBMISSION_FINALIZER,
    RouteDecision,
    keyword_classify,
    parse_classification,
    route,
)
from formdesk.orchestrator.state import FormStatus, merge_state, new_session


class TestOverrides:
    async def test_active_collection_always_routes_to_collector(self, started_session, llm_offline):
        """Collection wins even when the input looks like a status question."""
        llm_offline.complete.side_effect = None
        llm_offline.complete.return_value = '{"handler": "status_tracker"}'

        decision = await route(started_session("PAN001"), "what's the status of my application?")

        assert decision.handler == FIELD_COLLECTOR
        assert decision.reason == "collection_active"
        llm_offline.complete.assert_not_called()

    async def test_ready_form_routes_to_finalizer(self, ready_session):
        decision = await route(ready_session, "yes")
        assert decision.handler == SUBMISSION_FINALIZER

    async def test_completed_status_routes_to_finalizer(self):
        session = merge_state(new_session("s"), {"form_status": FormStatus.COMPLETED})
        assert (await route(session, "hello")).handler == SUBMISSION_FINALIZER


class TestClassification:
    async def test_status_keywords_skip_the_model(self, llm_offline):
        decision = await route(new_session("s"), "Can you track my application?")
        assert decision == RouteDecision(STATUS_TRACKER, "keyword")
        llm_offline.complete.assert_not_called()

    async def test_submission_reference_routes_to_status(self):
        decision = await route(new_session("s"), "any news on 3F9A1C2B")
        assert decision.handler == STATUS_TRACKER

    async def test_model_choice_is_used(self, llm_offline):
        llm_offline.complete.side_effect = None
        llm_offline.complete.return_value = '{"handler": "status_tracker"}'
        decision = await route(new_session("s"), "did they approve it yet")
        assert decision.handler == STATUS_TRACKER
        assert decision.reason == "classifier"

    async def test_model_failure_defaults_to_general(self):
        decision = await route(new_session("s"), "hello")
        assert decision.handler == GENERAL_ASSISTANT
        assert decision.reason == "classifier_failed"

    async def test_unrecognized_output_defaults_to_general(self, llm_offline):
        llm_offline.complete.side_effect = None
        llm_offline.complete.return_value = "field_collector"
        decision = await route(new_session("s"), "hello")
        assert decision.handler == GENERAL_ASSISTANT
        assert decision.reason == "classifier_unrecognized"

    async def test_routing_flag_off_uses_keywords_only(self, monkeypatch, llm_offline):
        monkeypatch.setenv("FF_LLM_INTENT_ROUTING", "false")
        get_flags.cache_clear()
        decision = await route(new_session("s"), "hello")
        assert decision.handler == GENERAL_ASSISTANT
        assert decision.reason == "default"
        llm_offline.complete.assert_not_called()


class TestParsing:
    @pytest.mark.parametrize("text,expected", [
        ('{"handler": "status_tracker"}', STATUS_TRACKER),
        ('Sure: {"handler": "General_Assistant"}', GENERAL_ASSISTANT),
        ("status_tracker", STATUS_TRACKER),
        ("general_assistant or status_tracker", None),
        ('{"handler": "submission_finalizer"}', None),
        ("no idea", None),
    ])
    def test_parse_classification(self, text, expected):
        assert parse_classification(text) == expected

    def test_keyword_classify_ignores_plain_words(self):
        assert keyword_classify("I was ACCEPTED into college") is None
        assert keyword_classify("hello") is None
