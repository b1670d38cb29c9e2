"""
Error taxonomy for capability adapters and session handling.

Adapter errors are caught at the handler boundary and turned into
user-facing apologies. Nothing here is ever shown to the user verbatim.
"""


class AdapterError(Exception):
    """An external capability (completion, retrieval, rendering) failed."""

    def __init__(self, capability: str, message: str = ""):
        self.capability = capability
        super().__init__(f"{capability}: {message}" if message else capability)


class AdapterTimeout(AdapterError):
    """A capability call did not finish within its configured timeout."""


class MalformedOutput(AdapterError):
    """A capability returned output that could not be parsed."""


class ToolInputError(ValueError):
    """Tool arguments failed schema validation."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"Invalid input for {tool_name}: {message}")


class FormNotFound(LookupError):
    """No form with the given id exists in the catalog."""

    def __init__(self, form_id: str):
        self.form_id = form_id
        super().__init__(f"Form not found: {form_id}")


class SessionBusy(RuntimeError):
    """Another turn for the same session still holds its lock."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session busy: {session_id}")
