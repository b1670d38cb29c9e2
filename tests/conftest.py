"""Shared fixtures: isolated settings, in-memory sessions, offline model, temp database."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from formdesk.core import database
from formdesk.core.config import get_settings
from formdesk.core.errors import AdapterError
from formdesk.core.flags import get_flags
from formdesk.forms import catalog
from formdesk.forms.catalog import FormCatalog
from formdesk.orchestrator import orchestrator
from formdesk.orchestrator.state import SessionState, merge_state, new_session, with_value
from formdesk.services import knowledge, session_store
from formdesk.services.session_store import InMemorySessionStore
from formdesk.tools.form_catalog import begin_application


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point every path at tmp_path and turn external services off."""
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("FF_USE_REDIS", "false")
    monkeypatch.setenv("FF_USE_S3", "false")
    monkeypatch.setenv("FF_USE_RETRIEVAL", "true")
    monkeypatch.setenv("FF_USE_PDF_RENDER", "false")
    monkeypatch.setenv("FF_LLM_INTENT_ROUTING", "true")
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("LOCAL_STORAGE_PATH", str(tmp_path / "artifacts"))
    monkeypatch.setenv("KNOWLEDGE_PATH", str(tmp_path / "knowledge"))
    monkeypatch.setenv("FORM_CATALOG_PATH", str(tmp_path / "forms"))
    monkeypatch.setenv("PDF_TEMPLATES_PATH", str(tmp_path / "templates"))
    for key in ("GEMINI_API_KEY", "AIML_API_KEY", "OPENAI_API_KEY", "FF_LLM_PROVIDER"):
        monkeypatch.delenv(key, raising=False)

    get_settings.cache_clear()
    get_flags.cache_clear()
    monkeypatch.setattr(database, "_engine", None)
    monkeypatch.setattr(database, "_session_factory", None)
    monkeypatch.setattr(catalog, "_catalog", None)
    monkeypatch.setattr(knowledge, "_indexed_path", None)
    monkeypatch.setattr(orchestrator, "_machine", None)
    session_store.set_session_store(InMemorySessionStore())

    yield tmp_path

    session_store.set_session_store(None)
    get_settings.cache_clear()
    get_flags.cache_clear()


@pytest.fixture(autouse=True)
def llm_offline():
    """
    The model is unreachable unless a test says otherwise. Handlers fall back
    to their deterministic text. Reconfigure via llm_offline.complete.side_effect.
    """
    offline = AdapterError("completion", "offline")
    with patch("formdesk.services.llm.complete", new=AsyncMock(side_effect=offline)) as complete, \
            patch("formdesk.services.llm.complete_with_tools", new=AsyncMock(side_effect=offline)) as with_tools:
        yield SimpleNamespace(complete=complete, complete_with_tools=with_tools)


@pytest.fixture
async def db():
    """Fresh sqlite database with all tables created."""
    await database.init_db()
    yield
    await database.close_db()


@pytest.fixture
def forms():
    return FormCatalog.with_builtins()


@pytest.fixture
def started_session(forms):
    """
    Build a session mid-collection: start_form("PAN001", full_name="John Doe")
    returns a session with those fields answered and current_field on the next gap.
    """

    def start_form(form_id: str, session_id: str = "test-session", **values) -> SessionState:
        session = merge_state(new_session(session_id), begin_application(forms.get_form_by_id(form_id)).update)
        fields = session.form_fields
        for name, value in values.items():
            fields = with_value(fields, name, value)
        upcoming = next((f.name for f in fields if f.value is None), None)
        return merge_state(session, {"form_fields": fields, "current_field": upcoming})

    return start_form


@pytest.fixture
def ready_session(started_session):
    """A PAN001 session with every field answered, waiting for confirmation."""
    session = started_session(
        "PAN001",
        full_name="John Doe",
        father_name="Richard Doe",
        dob="15/08/1990",
        gender="Male",
        aadhaar_number="123456789012",
        mobile_number="9876543210",
        address="12 Main Street, Mumbai",
        declaration_consent="yes",
    )
    return merge_state(session, {
        "current_field": None,
        "is_form_filling_started": False,
        "is_form_ready": True,
        "form_status": "completed",
    })
