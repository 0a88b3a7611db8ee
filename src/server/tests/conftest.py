import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("CELERY_BROKER_URL", "redis://localhost:6379/0")
os.environ.setdefault("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")

import pytest
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient
from main.app import app
from main.dependencies import auth_helper
from main.chat.routes import llm_client
from main.integrations.routes import composio_client

# --- Test User Data ---
TEST_USER_ID = "test-user-123"
TEST_USER_PERMISSIONS = [
    "read:chat", "write:chat", "read:agents", "write:agents",
    "read:memory", "write:memory", "read:config", "write:config",
]
AUTH_HEADERS = {"Authorization": "Bearer test-token"}

# Every module that binds the shared mongo_manager at import time.
MONGO_MANAGER_IMPORTS = [
    "main.dependencies.mongo_manager",
    "main.app.mongo_manager",
    "main.chat.routes.mongo_manager",
    "main.agents.routes.mongo_manager",
    "main.integrations.routes.mongo_manager",
    "main.user_context.routes.mongo_manager",
]

# --- Fixtures ---

@pytest.fixture(scope="function")
def mock_mongo_manager(mocker):
    """Mocks the global mongo_manager instance everywhere it is imported."""
    mock = AsyncMock()
    mock.client = MagicMock()
    mock.get_connected_apps = AsyncMock(return_value=[])
    mock.get_user_preferences = AsyncMock(return_value=None)
    mock.get_user_facts = AsyncMock(return_value=None)
    mock.get_recent_messages = AsyncMock(return_value=[])
    mock.get_chats_for_user = AsyncMock(return_value=[])
    mock.get_scan_task = AsyncMock(return_value=None)
    for target in MONGO_MANAGER_IMPORTS:
        mocker.patch(target, new=mock)
    return mock

@pytest.fixture(scope="function")
def permissions():
    """Permissions granted to the test user. Override in a test module to narrow them."""
    return list(TEST_USER_PERMISSIONS)

@pytest.fixture(scope="function")
def mock_llm_client():
    return MagicMock()

@pytest.fixture(scope="function")
def mock_composio():
    return MagicMock()

@pytest.fixture(scope="function")
def client(mock_mongo_manager, mock_llm_client, mock_composio, permissions, mocker):
    """Provides a TestClient for the FastAPI app with mocked auth, LLM and Composio."""
    mocker.patch.object(
        auth_helper,
        "get_current_user_id_and_permissions",
        new=AsyncMock(return_value=(TEST_USER_ID, permissions)),
    )

    app.dependency_overrides[llm_client] = lambda: mock_llm_client
    app.dependency_overrides[composio_client] = lambda: mock_composio

    with TestClient(app) as test_client:
        yield test_client

    # Clean up overrides after test
    app.dependency_overrides = {}
