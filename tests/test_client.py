import asyncio
import logging

import pytest
from mcp import types
from mcp.shared.exceptions import McpError

from kubemanage_mcp.client import SessionClient
from kubemanage_mcp.content import text_content
from kubemanage_mcp.errors import ClientClosedError, ConfigError, ConnectError, ToolError
from kubemanage_mcp.model import ServerConfig
from tests.fake_session import FakeConnector, wait_until


def make_config(**overrides) -> ServerConfig:
    values = {"name": "fake", "command": "fake-provider", "args": ["--stdio"], "default_tool": "echo"}
    values.update(overrides)
    return ServerConfig(**values)


def test_client_requires_a_command():
    with pytest.raises(ConfigError):
        SessionClient(make_config(command=""), connector=FakeConnector())


@pytest.mark.asyncio
async def test_client_connects_lazily():
    # Given
    connector = FakeConnector()
    client = SessionClient(make_config(), connector=connector)

    # Then
    assert connector.spawns == 0
    assert not client.connected

    # When
    result = await client.call_tool("echo", {"text": "hi"})

    # Then
    assert text_content(result.content) == "hi"
    assert connector.spawns == 1
    assert client.connected
    await client.close()


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_connection():
    # Given
    connector = FakeConnector(delay=0.05)
    client = SessionClient(make_config(), connector=connector)

    # When
    first, second = await asyncio.gather(client.ensure_session(), client.ensure_session())

    # Then
    assert connector.spawns == 1
    assert first is second
    await client.close()


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_failure():
    # Given
    connector = FakeConnector(delay=0.05, error=OSError("no such file"))
    client = SessionClient(make_config(), connector=connector)

    # When
    results = await asyncio.gather(client.ensure_session(), client.ensure_session(), return_exceptions=True)

    # Then
    assert connector.spawns == 1
    assert all(isinstance(result, ConnectError) for result in results)
    assert "no such file" in str(results[0])
    assert not client.connected

    # failures are not cached, the next call tries again
    connector.error = None
    await client.ensure_session()
    assert connector.spawns == 2
    await client.close()


@pytest.mark.asyncio
async def test_startup_timeout_bounds_the_handshake():
    connector = FakeConnector(delay=1.0)
    client = SessionClient(make_config(startup_timeout=0.05), connector=connector)

    with pytest.raises(ConnectError, match="handshake"):
        await client.ensure_session()
    assert not client.connected


@pytest.mark.asyncio
async def test_shorter_caller_timeout_wins():
    connector = FakeConnector(delay=1.0)
    client = SessionClient(make_config(startup_timeout=30.0), connector=connector)

    with pytest.raises(ConnectError):
        await client.ensure_session(timeout=0.05)


@pytest.mark.asyncio
async def test_joining_caller_honours_its_own_deadline():
    # Given
    connector = FakeConnector(delay=1.0)
    client = SessionClient(make_config(startup_timeout=30.0), connector=connector)
    first = asyncio.create_task(client.ensure_session())
    assert await wait_until(lambda: connector.spawns == 1)

    # When
    with pytest.raises(ConnectError, match="handshake"):
        await client.ensure_session(timeout=0.05)

    # Then
    session = await first
    assert session is connector.sessions[0]
    assert connector.spawns == 1
    assert client.connected
    await client.close()


@pytest.mark.asyncio
async def test_tool_error_carries_provider_text_and_keeps_session():
    # Given
    connector = FakeConnector()
    client = SessionClient(make_config(), connector=connector)

    # When
    with pytest.raises(ToolError, match="Unknown tool: nope"):
        await client.call_tool("nope", {})
    tools = await client.list_tools()

    # Then
    assert [tool.name for tool in tools] == ["echo"]
    assert connector.spawns == 1
    await client.close()


@pytest.mark.asyncio
async def test_error_result_joins_all_text_blocks():
    connector = FakeConnector()
    client = SessionClient(make_config(), connector=connector)
    session = await client.ensure_session()
    session.results["broken"] = types.CallToolResult(isError=True, content=[
        types.TextContent(type="text", text="first"),
        types.TextContent(type="text", text="second"),
    ])

    with pytest.raises(ToolError) as excinfo:
        await client.call_tool("broken")

    assert "first\nsecond" in str(excinfo.value)
    await client.close()


@pytest.mark.asyncio
async def test_empty_result_and_protocol_errors_are_tool_errors():
    connector = FakeConnector()
    client = SessionClient(make_config(), connector=connector)
    session = await client.ensure_session()
    session.results["nothing"] = None
    session.results["invalid"] = McpError(types.ErrorData(code=types.INVALID_PARAMS, message="bad params"))

    with pytest.raises(ToolError, match="empty result"):
        await client.call_tool("nothing")
    with pytest.raises(ToolError, match="bad params"):
        await client.call_tool("invalid")
    await client.close()


@pytest.mark.asyncio
async def test_empty_tool_name_is_rejected_without_connecting():
    connector = FakeConnector()
    client = SessionClient(make_config(), connector=connector)

    with pytest.raises(ToolError):
        await client.call_tool("")
    assert connector.spawns == 0


@pytest.mark.asyncio
async def test_default_tool():
    connector = FakeConnector()
    client = SessionClient(make_config(), connector=connector)
    no_default = SessionClient(make_config(default_tool=""), connector=connector)

    result = await client.call_default_tool({"text": "default"})

    assert text_content(result.content) == "default"
    assert connector.sessions[0].calls == [("echo", {"text": "default"})]
    with pytest.raises(ToolError, match="default tool"):
        await no_default.call_default_tool({})
    await client.close()


@pytest.mark.asyncio
async def test_close_is_terminal_and_idempotent():
    # Given
    connector = FakeConnector()
    client = SessionClient(make_config(), connector=connector)
    session = await client.ensure_session()

    # When
    await client.close()
    await client.close()

    # Then
    assert session.closed
    assert client.closed
    assert not client.connected
    with pytest.raises(ClientClosedError):
        await client.ensure_session()
    with pytest.raises(ConnectError):
        await client.call_tool("echo", {"text": "hi"})
    assert connector.spawns == 1


@pytest.mark.asyncio
async def test_close_cancels_inflight_connection():
    # Given
    connector = FakeConnector(delay=5.0)
    client = SessionClient(make_config(), connector=connector)
    pending = asyncio.create_task(client.ensure_session())
    assert await wait_until(lambda: connector.spawns == 1)

    # When
    await client.close()

    # Then
    with pytest.raises(ClientClosedError):
        await pending
    assert not client.connected


@pytest.mark.asyncio
async def test_watcher_resets_client_after_session_death(caplog):
    # Given
    connector = FakeConnector()
    client = SessionClient(make_config(), connector=connector)
    first = await client.ensure_session()

    # When
    with caplog.at_level(logging.WARNING, logger="kubemanage_mcp.client"):
        connector.sessions[0].terminate(RuntimeError("process exited"))
        assert await wait_until(lambda: not client.connected)

    # Then
    assert any("process exited" in record.getMessage() for record in caplog.records)
    second = await client.ensure_session()
    assert second is not first
    assert connector.spawns == 2
    await client.close()


@pytest.mark.asyncio
async def test_clean_session_end_is_logged_as_info(caplog):
    connector = FakeConnector()
    client = SessionClient(make_config(), connector=connector)
    await client.ensure_session()

    with caplog.at_level(logging.INFO, logger="kubemanage_mcp.client"):
        connector.sessions[0].terminate()
        assert await wait_until(lambda: not client.connected)

    ended = [record for record in caplog.records if "ended normally" in record.getMessage()]
    assert ended and ended[0].levelno == logging.INFO
    await client.close()


@pytest.mark.asyncio
async def test_transport_failure_drops_session_and_next_call_reconnects():
    # Given
    connector = FakeConnector()
    client = SessionClient(make_config(), connector=connector)
    broken = await client.ensure_session()
    broken.results["echo"] = ConnectError("MCP server fake exited")

    # When
    with pytest.raises(ConnectError, match="exited"):
        await client.call_tool("echo", {"text": "lost"})

    # Then
    assert not client.connected
    assert broken.closed
    result = await client.call_tool("echo", {"text": "back"})
    assert text_content(result.content) == "back"
    assert connector.spawns == 2
    await client.close()
