import json

import pytest
from fastapi.testclient import TestClient

from kubemanage_mcp.bootstrap import load_mcp_api
from kubemanage_mcp.config import load_mcp_config
from kubemanage_mcp.errors import ConfigError
from kubemanage_mcp.manager import McpManager
from kubemanage_mcp.model import McpConfig, McpServerTemplate
from tests.fake_session import FakeConnector


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def manager(connector) -> McpManager:
    cfg = McpConfig(enable=True, servers=[
        McpServerTemplate(name="docs", display_name="Docs", image="img/docs:1", default_tool="echo"),
    ])
    return McpManager.from_config(cfg, connector=connector)


@pytest.fixture
def api(manager):
    with TestClient(load_mcp_api(manager)) as client:
        yield client


def test_health(api):
    assert api.get("/health").json() == {"status": "OK"}


def test_list_servers_omits_empty_optional_fields(api):
    response = api.get("/mcp/servers")

    assert response.status_code == 200
    assert response.json() == [{
        "name": "docs",
        "display_name": "Docs",
        "description": "",
        "default_tool": "echo",
        "image": "img/docs:1",
    }]


def test_create_server_and_conflict(api):
    # Given
    body = {"name": "fetch", "command": "uvx", "args": ["mcp-server-fetch"], "tags": ["web"], "set_default": True}

    # When
    created = api.put("/mcp/server", json=body)
    conflict = api.put("/mcp/server", json=body)
    invalid = api.put("/mcp/server", json={"name": "broken", "command": "node"})

    # Then
    assert created.status_code == 200
    assert created.json()["name"] == "fetch"
    assert created.json()["tags"] == ["web"]
    assert conflict.status_code == 409
    assert invalid.status_code == 400
    assert {server["name"] for server in api.get("/mcp/servers").json()} == {"docs", "fetch"}


def test_list_tools_and_call_tool(api, connector):
    tools = api.get("/mcp/server/docs/tools")
    called = api.post("/mcp/server/docs/tool/echo", json={"text": "hello"})
    default = api.post("/mcp/server/docs/default-tool", json={"text": "again"})

    assert tools.status_code == 200
    assert [tool["name"] for tool in tools.json()] == ["echo"]
    assert called.status_code == 200
    assert called.json()["content"][0]["text"] == "hello"
    assert default.json()["content"][0]["text"] == "again"
    assert connector.spawns == 1


def test_error_mapping(api):
    assert api.get("/mcp/server/missing/tools").status_code == 404
    assert api.post("/mcp/server/docs/tool/nope", json={}).status_code == 422


def test_connect_failure_maps_to_bad_gateway(manager, connector):
    connector.error = OSError("docker not found")
    with TestClient(load_mcp_api(manager)) as client:
        response = client.get("/mcp/server/docs/tools")

    assert response.status_code == 502
    assert "docker not found" in response.json()["detail"]


def test_shutdown_closes_the_manager(manager, connector):
    with TestClient(load_mcp_api(manager)) as client:
        client.post("/mcp/server/docs/tool/echo", json={"text": "hi"})

    assert manager.client("docs").closed


def test_load_mcp_config_accepts_nested_block(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"mcp": {"enable": True, "defaultTool": "search",
                                        "servers": [{"name": "a", "image": "img"}]}}))

    cfg = load_mcp_config(path)

    assert cfg.enable
    assert cfg.default_tool == "search"
    assert cfg.servers[0].name == "a"


def test_load_mcp_config_errors(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")

    with pytest.raises(ConfigError):
        load_mcp_config(tmp_path / "missing.json")
    with pytest.raises(ConfigError):
        load_mcp_config(broken)
