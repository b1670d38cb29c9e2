"""Tests for the tool registry and the catalog/knowledge tools."""

import pytest

from formdesk.core.errors import ToolInputError
from formdesk.orchestrator.state import new_session
from formdesk.tools.registry import get_tool_names, get_tools_for_llm, init_tools, parse_arguments, run_tool


@pytest.fixture(autouse=True)
def tools():
    init_tools()


class TestRegistry:
    def test_tools_registered(self):
        assert {"list_forms", "get_form_structure", "start_application", "search_knowledge"} <= set(get_tool_names())

    def test_schemas_are_closed_objects(self):
        by_name = {t["function"]["name"]: t["function"] for t in get_tools_for_llm()}
        schema = by_name["get_form_structure"]["parameters"]
        assert schema["type"] == "object"
        assert schema["additionalProperties"] is False
        assert schema["required"] == ["form_id"]
        assert "title" not in schema

    def test_arguments_are_normalized(self):
        assert parse_arguments("get_form_structure", '{"form_id": " pan001 "}').form_id == "PAN001"

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '{"form_id": ""}', '{"form_id": "  "}', "{}"])
    def test_bad_arguments_raise(self, raw):
        with pytest.raises(ToolInputError):
            parse_arguments("get_form_structure", raw)

    def test_extra_keys_are_dropped(self):
        args = parse_arguments("get_form_structure", {"form_id": "PSP001", "reason": "user asked"})
        assert args.model_dump() == {"form_id": "PSP001"}

    def test_unknown_tool(self):
        with pytest.raises(ToolInputError):
            parse_arguments("delete_everything", "{}")


class TestCatalogTools:
    async def test_list_forms_displays_catalog(self):
        result = await run_tool("list_forms", "", session=new_session("s"))
        assert "PAN001" in result.content
        assert result.display.startswith("Here are the forms")

    async def test_structure_of_unknown_form(self):
        result = await run_tool("get_form_structure", {"form_id": "ZZZ999"}, session=new_session("s"))
        assert result.display is None
        assert "no form with ID 'ZZZ999'" in result.content
        assert result.update == {}

    async def test_start_application(self):
        result = await run_tool("start_application", {"form_id": "DL001"}, session=new_session("s"))
        assert result.update["is_form_filling_started"] is True
        assert result.update["current_field"] == "first_name"
        assert len(result.update["form_fields"]) == 6


class TestKnowledgeTool:
    async def test_no_matches(self, db):
        result = await run_tool("search_knowledge", {"query": "visa fees"}, session=new_session("s"))
        assert result.content == "No matching passages found."

    async def test_query_too_short(self):
        with pytest.raises(ToolInputError):
            await run_tool("search_knowledge", {"query": "a"}, session=new_session("s"))
