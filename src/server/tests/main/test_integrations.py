from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from main.integrations.utils import (
    execute_composio_tool, get_tools_for_apps, index_tool_schemas, resolve_action_name,
)

TEST_USER_ID = "test-user-123"
AUTH_HEADERS = {"Authorization": "Bearer test-token"}

# --- Routes ---

def test_get_connected_tools(client: TestClient, mock_mongo_manager):
    mock_mongo_manager.get_connected_apps.return_value = ["gmail"]

    response = client.get("/integrations/tools", headers=AUTH_HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["connectedApps"] == ["gmail"]
    assert {tool["name"]: tool["connected"] for tool in data["tools"]}["gmail"] is True

def test_toggle_tool(client: TestClient, mock_mongo_manager):
    mock_mongo_manager.get_connected_apps.return_value = []

    response = client.post("/integrations/tools", headers=AUTH_HEADERS, json={"tool": "github", "connected": False})

    assert response.status_code == 200
    mock_mongo_manager.set_app_connected.assert_called_once_with(TEST_USER_ID, "github", False)

def test_toggle_unknown_tool(client: TestClient):
    response = client.post("/integrations/tools", headers=AUTH_HEADERS, json={"tool": "fax", "connected": True})
    assert response.status_code == 400

def test_connect_returns_redirect(client: TestClient, mock_composio, monkeypatch):
    monkeypatch.setenv("GMAIL_AUTH_CONFIG_ID", "ac_123")
    mock_composio.connected_accounts.initiate.return_value = SimpleNamespace(redirect_url="https://composio.dev/x", id="ca_1")

    response = client.post("/integrations/connect", headers=AUTH_HEADERS, json={"service": "gmail"})

    assert response.status_code == 200
    assert response.json() == {"redirectUrl": "https://composio.dev/x", "connectionId": "ca_1"}
    assert mock_composio.connected_accounts.initiate.call_args.kwargs["auth_config_id"] == "ac_123"

def test_connect_unknown_service(client: TestClient):
    response = client.post("/integrations/connect", headers=AUTH_HEADERS, json={"service": "fax"})
    assert response.status_code == 400

def test_connection_status(client: TestClient, mock_composio):
    mock_composio.connected_accounts.get.return_value = SimpleNamespace(status="ACTIVE")

    response = client.get("/integrations/connect/status?connectionId=ca_1", headers=AUTH_HEADERS)

    assert response.json() == {"connectionId": "ca_1", "status": "ACTIVE", "connected": True}

# --- Tool helpers ---

def test_resolve_action_name_prefers_metadata():
    schema = {"function": {"name": "gmail_send"}, "metadata": {"actionName": "gmail_send_an_email"}}
    assert resolve_action_name(schema, "gmail_send") == "GMAIL_SEND_AN_EMAIL"

def test_resolve_action_name_falls_back_to_function_name():
    assert resolve_action_name(None, "github_get_the_authenticated_user") == "GITHUB_GET_THE_AUTHENTICATED_USER"

def test_index_tool_schemas_skips_nameless_entries():
    index = index_tool_schemas([{"function": {"name": "a"}}, {"function": {}}, {}])
    assert list(index) == ["a"]

@pytest.mark.asyncio
async def test_execute_returns_data_on_success():
    composio = MagicMock()
    composio.tools.execute.return_value = {"successful": True, "data": {"id": 1}, "error": None}

    result = await execute_composio_tool(composio, "u1", "GITHUB_GET_THE_AUTHENTICATED_USER", {})

    assert result == {"success": True, "data": {"id": 1}}

@pytest.mark.asyncio
async def test_execute_reports_unsuccessful_results():
    composio = MagicMock()
    composio.tools.execute.return_value = {"successful": False, "data": {}, "error": "bad token"}

    result = await execute_composio_tool(composio, "u1", "GMAIL_SEND_AN_EMAIL", {})

    assert result == {"success": False, "error": "bad token"}

@pytest.mark.asyncio
async def test_execute_never_raises():
    composio = MagicMock()
    composio.tools.execute.side_effect = RuntimeError("network")

    result = await execute_composio_tool(composio, "u1", "GMAIL_SEND_AN_EMAIL", {})

    assert result == {"success": False, "error": "network"}

@pytest.mark.asyncio
async def test_get_tools_ignores_unknown_apps():
    composio = MagicMock()
    composio.tools.get.return_value = [{"function": {"name": "gmail_send"}}]

    tools = await get_tools_for_apps(composio, "u1", ["gmail", "fax"])

    assert tools == [{"function": {"name": "gmail_send"}}]
    composio.tools.get.assert_called_once_with(user_id="u1", toolkits=["gmail"])

@pytest.mark.asyncio
async def test_get_tools_searches_by_use_case_first():
    composio = MagicMock()
    composio.tools.get.return_value = [{"function": {"name": "GMAIL_SEND_EMAIL"}}]

    tools = await get_tools_for_apps(composio, "u1", ["gmail", "github"], use_case="email my boss")

    assert tools == [{"function": {"name": "GMAIL_SEND_EMAIL"}}]
    composio.tools.get.assert_called_once_with(user_id="u1", toolkits=["gmail", "github"], search="email my boss")

@pytest.mark.asyncio
async def test_get_tools_falls_back_to_whole_toolkits_when_search_finds_nothing():
    composio = MagicMock()
    full_list = [{"function": {"name": "GITHUB_LIST_REPOS"}}, {"function": {"name": "GITHUB_STAR_REPO"}}]
    composio.tools.get.side_effect = [[], full_list]

    tools = await get_tools_for_apps(composio, "u1", ["github"], use_case="what's the weather")

    assert tools == full_list
    assert composio.tools.get.call_args_list[0].kwargs == {"user_id": "u1", "toolkits": ["github"], "search": "what's the weather"}
    assert composio.tools.get.call_args_list[1].kwargs == {"user_id": "u1", "toolkits": ["github"]}

@pytest.mark.asyncio
async def test_get_tools_falls_back_when_search_errors():
    composio = MagicMock()
    full_list = [{"function": {"name": "GMAIL_FETCH_EMAILS"}}]
    composio.tools.get.side_effect = [RuntimeError("search unavailable"), full_list]

    tools = await get_tools_for_apps(composio, "u1", ["gmail"], use_case="read my inbox")

    assert tools == full_list
