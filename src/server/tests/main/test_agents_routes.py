from fastapi.testclient import TestClient

TEST_USER_ID = "test-user-123"
AUTH_HEADERS = {"Authorization": "Bearer test-token"}

VALID_AGENT = {
    "name": "Chef",
    "description": "Cooks things.",
    "context": "Kitchen helper",
    "instructions": "Suggest recipes.",
    "connectedApps": ["gmail"],
}

def test_create_agent(client: TestClient, mock_mongo_manager):
    mock_mongo_manager.create_agent.return_value = {"agent_id": "agent-1", "name": "Chef"}

    response = client.post("/agents", headers=AUTH_HEADERS, json=VALID_AGENT)

    assert response.status_code == 201
    assert response.json() == {"agent": {"agent_id": "agent-1", "name": "Chef"}}
    stored = mock_mongo_manager.create_agent.call_args.args[1]
    assert stored["connected_apps"] == ["gmail"]
    assert stored["instructions"] == "Suggest recipes."

def test_create_agent_missing_fields(client: TestClient, mock_mongo_manager):
    response = client.post("/agents", headers=AUTH_HEADERS, json={"name": "Chef", "description": ""})

    assert response.status_code == 400
    assert "description" in response.json()["detail"]
    mock_mongo_manager.create_agent.assert_not_called()

def test_create_agent_unknown_app(client: TestClient):
    response = client.post("/agents", headers=AUTH_HEADERS, json={**VALID_AGENT, "connectedApps": ["fax"]})
    assert response.status_code == 400

def test_list_agents(client: TestClient, mock_mongo_manager):
    mock_mongo_manager.get_agents_for_user.return_value = [{"agent_id": "agent-1"}]

    response = client.get("/agents", headers=AUTH_HEADERS)

    assert response.json() == {"agents": [{"agent_id": "agent-1"}]}

def test_get_agent_not_found(client: TestClient, mock_mongo_manager):
    mock_mongo_manager.get_agent.return_value = None

    response = client.get("/agents/agent-1", headers=AUTH_HEADERS)

    assert response.status_code == 404

def test_update_agent_partial(client: TestClient, mock_mongo_manager):
    mock_mongo_manager.update_agent.return_value = {"agent_id": "agent-1", "name": "Head Chef"}

    response = client.put("/agents/agent-1", headers=AUTH_HEADERS, json={"name": "Head Chef", "connectedApps": ["github"]})

    assert response.status_code == 200
    mock_mongo_manager.update_agent.assert_called_once_with(
        "agent-1", TEST_USER_ID, {"name": "Head Chef", "connected_apps": ["github"]}
    )

def test_update_agent_ignores_null_fields(client: TestClient, mock_mongo_manager):
    mock_mongo_manager.update_agent.return_value = {"agent_id": "agent-1", "instructions": "Be brief"}

    response = client.put("/agents/agent-1", headers=AUTH_HEADERS, json={"instructions": "Be brief", "name": None})

    assert response.status_code == 200
    mock_mongo_manager.update_agent.assert_called_once_with("agent-1", TEST_USER_ID, {"instructions": "Be brief"})

def test_update_agent_with_only_nulls_is_rejected(client: TestClient, mock_mongo_manager):
    response = client.put("/agents/agent-1", headers=AUTH_HEADERS, json={"name": None})

    assert response.status_code == 400
    mock_mongo_manager.update_agent.assert_not_called()

def test_update_agent_not_owned(client: TestClient, mock_mongo_manager):
    mock_mongo_manager.update_agent.return_value = None

    response = client.put("/agents/agent-1", headers=AUTH_HEADERS, json={"name": "X"})

    assert response.status_code == 404

def test_delete_agent(client: TestClient, mock_mongo_manager):
    mock_mongo_manager.delete_agent.return_value = True

    response = client.delete("/agents/agent-1", headers=AUTH_HEADERS)

    assert response.status_code == 200
    mock_mongo_manager.delete_agent.assert_called_once_with("agent-1", TEST_USER_ID)
