"""Shared test fixtures for backend tests."""

from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from engage.services.chat_service import ChatService
from engage.services.console import ConsoleRegistry, get_registry
from engage.services.store import ConversationStore
from engage.services.templates import TemplateCatalog, TemplateDefinition

# In-memory SQLite with StaticPool so all connections (including threads) share one DB
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TEMPLATES = [
    TemplateDefinition(
        id="t1", name="cod_confirm_v1", category="utility",
        body="Hi {{1}}! Your COD order {{2}} worth {{3}} is ready. Reply YES to confirm.",
        variables=["customer_name", "order_number", "amount"], status="approved",
    ),
    TemplateDefinition(
        id="t3", name="order_status_v1", category="utility",
        body="Hi {{1}}! Order {{2}} is {{3}}.",
        variables=["customer_name", "order_number", "status"], status="approved",
    ),
    TemplateDefinition(
        id="t4", name="support_greeting", category="utility",
        body="Hi {{1}}! How can we help you today?",
        variables=["customer_name"], status="pending",
    ),
]


@pytest.fixture(autouse=True)
def setup_test_db():
    """Create all tables before each test, drop after."""
    import engage.models  # noqa: F401 - register models
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def engine():
    return test_engine


@pytest.fixture
def store():
    return ConversationStore(test_engine)


@pytest.fixture
def catalog():
    return TemplateCatalog(TEMPLATES)


@pytest.fixture
def offline_service():
    """Chat service with no back-end configured: everything stays local."""
    return ChatService(base_url="")


@pytest.fixture
def backend_calls():
    return []


@pytest.fixture
def backend_service(backend_calls):
    """Chat service talking to a fake back-end that records every request."""
    def handler(request: httpx.Request) -> httpx.Response:
        backend_calls.append(request)
        if request.method == "GET":
            return httpx.Response(200, json=[])
        return httpx.Response(200, json={"ok": True})

    return ChatService(base_url="http://chat.test", token="secret", transport=httpx.MockTransport(handler))


@pytest.fixture
def registry(store, catalog, offline_service):
    return ConsoleRegistry(store, catalog, offline_service)


@pytest.fixture
def console(registry):
    return registry.for_operator("Ravi")


@pytest.fixture
def client(registry):
    """FastAPI TestClient on the test database and an offline chat service."""
    with patch("engage.core.database.engine", test_engine):
        from engage.main import app

        app.dependency_overrides[get_registry] = lambda: registry

        with TestClient(app) as c:
            yield c

        app.dependency_overrides.clear()
