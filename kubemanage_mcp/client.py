"""Lazily connected client for one named MCP server."""
import asyncio
import logging
from typing import Any

from mcp import types
from mcp.shared.exceptions import McpError

from .content import text_content
from .errors import ClientClosedError, ConfigError, ConnectError, ToolError
from .model import ServerConfig
from .transport import Connector, ToolSession, connect_stdio

logger = logging.getLogger(__name__)


class SessionClient:
    """Owns the session with one MCP server.

    The session is established on first use. Concurrent callers share a single
    connection attempt, and a background watcher resets the client when the
    session ends so that the next call reconnects. Once closed, the client
    never connects again.
    """

    def __init__(self, config: ServerConfig, connector: Connector | None = None) -> None:
        """Creates the client without connecting.

        Args:
            config: The resolved server configuration.
            connector: Factory establishing a ToolSession, defaults to launching
                the configured command over stdio.

        Raises:
            ConfigError: If the configuration has no command.
        """
        if not config.command:
            raise ConfigError(f"MCP server {config.name} has no command configured")
        self.config = config
        self._connector = connector or connect_stdio
        self._lock = asyncio.Lock()
        self._session: ToolSession | None = None
        self._watcher: asyncio.Task[None] | None = None
        self._connecting: asyncio.Task[ToolSession] | None = None
        self._closed = False

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def default_tool_name(self) -> str:
        return self.config.default_tool

    @property
    def connected(self) -> bool:
        return self._session is not None

    @property
    def closed(self) -> bool:
        return self._closed

    async def ensure_session(self, timeout: float | None = None) -> ToolSession:
        """Returns the live session, connecting first if there is none.

        Args:
            timeout: Optional caller deadline in seconds; the effective connect
                timeout is the shorter of it and the configured startup timeout.

        Returns:
            The active session.

        Raises:
            ClientClosedError: If the client is closed, or gets closed while connecting.
            ConnectError: If the server could not be launched or did not complete
                the handshake in time.
        """
        async with self._lock:
            if self._closed:
                raise ClientClosedError(f"MCP client {self.name} is closed")
            if self._session is not None:
                return self._session
            task = self._connecting
            if task is None:
                task = asyncio.create_task(self._connect(timeout), name=f"mcp-connect-{self.name}")
                task.add_done_callback(self._connect_done)
                self._connecting = task

        effective = self._effective_timeout(timeout)
        try:
            # a caller joining an attempt started by another still honours its own deadline
            return await asyncio.wait_for(asyncio.shield(task), timeout=effective)
        except asyncio.TimeoutError:
            raise ConnectError(
                f"MCP server {self.name} did not complete the handshake within {effective}s") from None
        except asyncio.CancelledError:
            if task.cancelled():
                raise ClientClosedError(f"MCP client {self.name} was closed while connecting") from None
            raise

    def _connect_done(self, task: asyncio.Task[ToolSession]) -> None:
        if self._connecting is task:
            self._connecting = None
        if not task.cancelled():
            # every waiter re-raises it; mark it retrieved for the no-waiter case
            task.exception()

    def _effective_timeout(self, timeout: float | None) -> float | None:
        limits = [t for t in (timeout, self.config.startup_timeout) if t is not None and t > 0]
        return min(limits) if limits else None

    async def _connect(self, timeout: float | None) -> ToolSession:
        effective = self._effective_timeout(timeout)
        try:
            session = await asyncio.wait_for(self._connector(self.config), timeout=effective)
        except asyncio.TimeoutError:
            raise ConnectError(
                f"MCP server {self.name} did not complete the handshake within {effective}s") from None
        except ConnectError:
            raise
        except Exception as e:
            raise ConnectError(f"failed to connect MCP server {self.name}: {e}") from e

        async with self._lock:
            if self._closed:
                stale = session
            else:
                stale = None
                self._session = session
                self._watcher = asyncio.create_task(self._watch(session), name=f"mcp-watch-{self.name}")
        if stale is not None:
            await stale.close()
            raise ClientClosedError(f"MCP client {self.name} was closed while connecting")

        logger.info(f"MCP session established for server {self.name} "
                    f"(impl={self.config.implementation_name}, command={self.config.command})")
        return session

    async def _watch(self, session: ToolSession) -> None:
        error: BaseException | None = None
        try:
            await session.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e

        async with self._lock:
            if self._session is session:
                self._session = None
                self._watcher = None

        if error is not None:
            logger.warning(f"MCP session for server {self.name} ended: {error!r}")
        else:
            logger.info(f"MCP session for server {self.name} ended normally")

    async def _discard(self, session: ToolSession) -> None:
        async with self._lock:
            if self._session is not session:
                return
            self._session = None
            watcher, self._watcher = self._watcher, None
        if watcher is not None:
            watcher.cancel()
        try:
            await session.close()
        except Exception as e:
            logger.warning(f"closing broken MCP session for server {self.name} failed: {e!r}")
        logger.warning(f"MCP session for server {self.name} dropped after a transport failure")

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None,
                        timeout: float | None = None) -> types.CallToolResult:
        """Calls a tool, connecting first if needed.

        Args:
            name: The name of the tool.
            arguments: The tool arguments.
            timeout: Optional connect deadline in seconds.

        Returns:
            The raw result of a successful call.

        Raises:
            ToolError: If the name is empty, the tool failed or returned nothing.
            ConnectError: If no session could be established, or the transport
                broke during the call; the broken session is dropped so the
                next call reconnects.
        """
        if not name:
            raise ToolError("tool name must not be empty")

        session = await self.ensure_session(timeout)
        try:
            result = await session.call_tool(name, arguments or {})
        except ConnectError:
            await self._discard(session)
            raise
        except McpError as e:
            raise ToolError(f"tool {name} failed: {e.error.message}") from e
        if result is None:
            raise ToolError(f"tool {name} returned an empty result")
        if result.isError:
            raise ToolError(f"tool {name} failed: {text_content(result.content)}")
        return result

    async def call_default_tool(self, arguments: dict[str, Any] | None = None,
                                timeout: float | None = None) -> types.CallToolResult:
        if not self.config.default_tool:
            raise ToolError(f"MCP server {self.name} has no default tool configured")
        return await self.call_tool(self.config.default_tool, arguments, timeout)

    async def list_tools(self, timeout: float | None = None) -> list[types.Tool]:
        """Queries the provider for its current tool catalog."""
        session = await self.ensure_session(timeout)
        try:
            return await session.list_tools()
        except ConnectError:
            await self._discard(session)
            raise
        except McpError as e:
            raise ToolError(f"listing tools of {self.name} failed: {e.error.message}") from e

    async def close(self) -> None:
        """Closes the client for good; calling it again is a no-op."""
        async with self._lock:
            self._closed = True
            connecting, self._connecting = self._connecting, None
            watcher, self._watcher = self._watcher, None
            session, self._session = self._session, None

        if connecting is not None:
            connecting.cancel()
        if watcher is not None:
            watcher.cancel()
        if session is not None:
            await session.close()
            logger.info(f"MCP session for server {self.name} closed")
