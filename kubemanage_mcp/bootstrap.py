"""Setup of the MCP manager and its FastAPI adapter."""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import APIRouter, Body, FastAPI, HTTPException

from .client import SessionClient
from .errors import AlreadyExistsError, ConfigError, ConnectError, McpClientError, NotFoundError, ToolError
from .manager import McpManager
from .model import CreateServerOptions, McpConfig, ServerMeta
from .transport import Connector

logger = logging.getLogger(__name__)

_STATUS_CODES: list[tuple[type[McpClientError], int]] = [
    (NotFoundError, 404),
    (AlreadyExistsError, 409),
    (ConfigError, 400),
    (ToolError, 422),
    (ConnectError, 502),
]


def init_from_config(cfg: McpConfig, connector: Connector | None = None) -> McpManager | None:
    """Builds the MCP manager, or returns None when the feature is disabled.

    Args:
        cfg: The MCP configuration block.
        connector: Optional session factory, defaults to stdio processes.

    Returns:
        A new McpManager, owned by the caller.
    """
    if not cfg.enable:
        logger.info("MCP is disabled, skipping initialization")
        return None
    return McpManager.from_config(cfg, connector=connector)


def _http_error(e: McpClientError) -> HTTPException:
    for kind, status in _STATUS_CODES:
        if isinstance(e, kind):
            return HTTPException(status_code=status, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def load_mcp_api(manager: McpManager) -> FastAPI:
    """Bootstraps the FastAPI application exposing the MCP registry.

    Args:
        manager: The registry to serve; it is closed when the app shuts down.

    Returns:
        A configured FastAPI application instance.
    """

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await manager.close()

    app = FastAPI(lifespan=lifespan)
    mcp_router = APIRouter()

    def lookup(name: str) -> SessionClient:
        try:
            return manager.client(name)
        except NotFoundError as e:
            raise _http_error(e)

    @mcp_router.get("/mcp/servers", response_model=list[ServerMeta], response_model_exclude_none=True)
    async def list_servers() -> list[ServerMeta]:
        """Endpoint to list all registered MCP servers."""
        return manager.list_servers()

    @mcp_router.put("/mcp/server", response_model=ServerMeta, response_model_exclude_none=True)
    async def create_server(options: CreateServerOptions) -> ServerMeta:
        """Endpoint to register a new MCP server at runtime."""
        try:
            return manager.add_server(options)
        except McpClientError as e:
            logger.error(f"Failed to create MCP server {options.name}: {e}")
            raise _http_error(e)

    @mcp_router.get("/mcp/server/{name}/tools")
    async def list_server_tools(name: str) -> list[dict[str, Any]]:
        """Endpoint to list the tools exposed by an MCP server."""
        client = lookup(name)
        try:
            tools = await client.list_tools()
        except McpClientError as e:
            logger.error(f"Failed to list tools of MCP server {name}: {e}")
            raise _http_error(e)
        return [tool.model_dump(exclude_none=True) for tool in tools]

    @mcp_router.post("/mcp/server/{name}/tool/{tool}")
    async def call_tool(name: str, tool: str, arguments: dict[str, Any] | None = Body(default=None)) -> dict[str, Any]:
        """Endpoint to call a tool of an MCP server."""
        client = lookup(name)
        try:
            result = await client.call_tool(tool, arguments)
        except McpClientError as e:
            logger.error(f"Failed to call tool {tool} of MCP server {name}: {e}")
            raise _http_error(e)
        return result.model_dump(exclude_none=True)

    @mcp_router.post("/mcp/server/{name}/default-tool")
    async def call_default_tool(name: str, arguments: dict[str, Any] | None = Body(default=None)) -> dict[str, Any]:
        """Endpoint to call the default tool of an MCP server."""
        client = lookup(name)
        try:
            result = await client.call_default_tool(arguments)
        except McpClientError as e:
            logger.error(f"Failed to call default tool of MCP server {name}: {e}")
            raise _http_error(e)
        return result.model_dump(exclude_none=True)

    app.include_router(mcp_router)

    @app.get("/health")
    def health_check() -> dict[str, Any]:
        """Health check endpoint."""
        return {"status": "OK"}

    return app
