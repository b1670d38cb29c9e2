"""
Tool registry.

Collects the General Assistant's tools and formats them for OpenAI function
calling. Every tool declares a pydantic input model; arguments from the
model are parsed and validated here, once, before the tool runs. A bad
payload raises ToolInputError and never reaches the tool.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, ValidationError

from ..core.errors import ToolInputError
from ..core.flags import get_flags

logger = logging.getLogger(__name__)


class ToolRisk(str, Enum):
    READ = "read"       # Read-only, no side effects
    WRITE = "write"     # Changes session state


@dataclass
class ToolResult:
    """What a tool returns to the tool loop."""

    content: str                                   # Sent back to the model
    update: dict = field(default_factory=dict)     # Partial session update
    display: Optional[str] = None                  # Shown to the user verbatim


# Each tool: {name, description, input_model, handler, risk}
_tools: list[dict] = []


def tool(
    name: str,
    description: str,
    input_model: type[BaseModel],
    risk: ToolRisk = ToolRisk.READ,
):
    """
    Decorator to register an async function as an LLM-callable tool.

    The function is called as handler(args, session=...) where args is an
    instance of input_model.
    """

    def decorator(func: Callable):
        if any(t["name"] == name for t in _tools):
            logger.warning("Tool '%s' already registered, overwriting", name)
            _tools[:] = [t for t in _tools if t["name"] != name]
        _tools.append({
            "name": name,
            "description": description,
            "input_model": input_model,
            "handler": func,
            "risk": risk.value,
        })
        logger.debug("Registered tool: %s [%s]", name, risk.value)
        return func

    return decorator


def _schema(model: type[BaseModel]) -> dict:
    schema = model.model_json_schema()
    schema.pop("title", None)
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    schema["additionalProperties"] = False
    return schema


def get_tools_for_llm() -> list[dict]:
    """Get all tools formatted for OpenAI function calling."""
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t["description"],
                "parameters": _schema(t["input_model"]),
            },
        }
        for t in _tools
    ]


def get_tool(name: str) -> Optional[dict]:
    for t in _tools:
        if t["name"] == name:
            return t
    return None


def get_tool_names() -> list[str]:
    return [t["name"] for t in _tools]


def parse_arguments(name: str, raw: Any) -> BaseModel:
    """
    Validate raw tool-call arguments against the tool's input model.

    raw is the JSON string the model sent (or an already-decoded dict).
    Raises ToolInputError on unknown tools, bad JSON, or schema mismatch.
    """
    entry = get_tool(name)
    if entry is None:
        raise ToolInputError(name, "unknown tool")

    if raw is None or raw == "":
        raw = {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ToolInputError(name, f"arguments are not valid JSON ({e.msg})") from e
    if not isinstance(raw, dict):
        raise ToolInputError(name, "arguments must be a JSON object")

    try:
        return entry["input_model"].model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
        )
        raise ToolInputError(name, problems) from e


async def run_tool(name: str, raw_arguments: Any, **context) -> ToolResult:
    """Parse, validate and run a tool. ToolInputError propagates to the caller."""
    args = parse_arguments(name, raw_arguments)
    handler = get_tool(name)["handler"]
    return await handler(args, **context)


_initialized = False


def init_tools() -> None:
    """
    Import tool modules to trigger registration.
    Call this once on startup.
    """
    global _initialized
    if _initialized:
        return
    flags = get_flags()

    from . import form_catalog  # noqa: F401

    if flags.use_retrieval:
        from . import knowledge_search  # noqa: F401

    _initialized = True
    logger.info(
        "Tools ready: %d tools [%s]",
        len(_tools),
        ", ".join(get_tool_names()),
    )
