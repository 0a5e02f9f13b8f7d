"""Tool sessions backed by a spawned MCP server process."""
import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator

import anyio
from anyio.abc import ObjectReceiveStream, ObjectSendStream
from mcp import ClientSession, StdioServerParameters, types
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError

from .errors import ConnectError
from .model import ServerConfig
from .resolver import build_launch_command

logger = logging.getLogger(__name__)

_STREAM_ERRORS = (anyio.ClosedResourceError, anyio.BrokenResourceError, anyio.EndOfStream)


class ToolSession(ABC):
    @abstractmethod
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> types.CallToolResult:
        """Invokes a tool on the provider.

        Args:
            name: The name of the tool.
            arguments: The tool arguments.

        Returns:
            The raw tool result.
        """
        pass

    @abstractmethod
    async def list_tools(self) -> list[types.Tool]:
        """Retrieves the tool catalog advertised by the provider.

        Returns:
            All tools of the provider.
        """
        pass

    @abstractmethod
    async def wait(self) -> None:
        """Blocks until the session terminates.

        Raises:
            Exception: If the session ended with an error.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Shuts the session down and waits for the provider to exit."""
        pass


Connector = Callable[[ServerConfig], Awaitable[ToolSession]]


class StdioToolSession(ToolSession):
    """MCP session over the stdin/stdout of a child process.

    A single runner task owns the process and the protocol session, since the
    SDK's cancel scopes must be entered and left by the same task. The runner
    relays the process output to the protocol session and ends the session
    with an error as soon as that output reaches end of stream (the process
    exited) or a keep-alive ping fails.
    """

    def __init__(self, name: str, params: StdioServerParameters, client_info: types.Implementation,
                 keep_alive: float = 0) -> None:
        self.name = name
        self._params = params
        self._client_info = client_info
        self._keep_alive = keep_alive
        self._session: ClientSession | None = None
        self._ready = asyncio.Event()
        self._stop = asyncio.Event()
        self._eof = asyncio.Event()
        self._runner: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Spawns the process and returns once the initialize handshake completed."""
        self._runner = asyncio.create_task(self._run(), name=f"mcp-session-{self.name}")
        ready = asyncio.create_task(self._ready.wait())
        try:
            await asyncio.wait({self._runner, ready}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            ready.cancel()
            self._runner.cancel()
            # the process is torn down before the cancellation propagates
            await asyncio.wait({self._runner})
            error = None if self._runner.cancelled() else self._runner.exception()
            if error is not None:
                logger.debug(f"MCP server {self.name} failed while being cancelled: {error!r}")
            raise
        ready.cancel()
        if not self._ready.is_set():
            # raises the launch or handshake failure, if any
            self._runner.result()
            raise ConnectError(f"{self._params.command} exited before completing the handshake")

    async def _run(self) -> None:
        async with stdio_client(self._params) as (read_stream, write_stream):
            relay_send, relay_receive = anyio.create_memory_object_stream(0)
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._relay, read_stream, relay_send)
                async with ClientSession(relay_receive, write_stream, client_info=self._client_info) as session:
                    await session.initialize()
                    self._session = session
                    self._ready.set()
                    try:
                        await self._supervise(session)
                    finally:
                        self._session = None
                tg.cancel_scope.cancel()

    async def _relay(self, source: ObjectReceiveStream, sink: ObjectSendStream) -> None:
        """Forwards process output to the protocol session and flags end of stream."""
        async with sink:
            try:
                async for message in source:
                    await sink.send(message)
            except (anyio.ClosedResourceError, anyio.BrokenResourceError):
                pass
        self._eof.set()

    async def _wait_for_signal(self, timeout: float | None) -> None:
        waiters = {asyncio.create_task(self._stop.wait()), asyncio.create_task(self._eof.wait())}
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    async def _supervise(self, session: ClientSession) -> None:
        interval = self._keep_alive if self._keep_alive > 0 else None
        while True:
            await self._wait_for_signal(interval)
            if self._stop.is_set():
                return
            if self._eof.is_set():
                raise ConnectError(f"MCP server {self.name} exited")
            await asyncio.wait_for(session.send_ping(), timeout=self._keep_alive)

    def _active(self) -> ClientSession:
        if self._session is None:
            raise ConnectError("MCP session is not active")
        return self._session

    @contextmanager
    def _transport_errors(self) -> Iterator[None]:
        try:
            yield
        except _STREAM_ERRORS as e:
            raise ConnectError(f"MCP server {self.name} is unreachable: {e!r}") from e
        except McpError as e:
            if self._eof.is_set():
                raise ConnectError(f"MCP server {self.name} exited: {e.error.message}") from e
            raise

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> types.CallToolResult:
        with self._transport_errors():
            return await self._active().call_tool(name, arguments)

    async def list_tools(self) -> list[types.Tool]:
        session = self._active()
        tools: list[types.Tool] = []
        cursor: str | None = None
        with self._transport_errors():
            while True:
                result = await session.list_tools(cursor=cursor)
                tools.extend(result.tools)
                cursor = result.nextCursor
                if not cursor:
                    return tools

    async def wait(self) -> None:
        if self._runner is None:
            return
        await asyncio.shield(self._runner)

    async def close(self) -> None:
        self._stop.set()
        if self._runner is None:
            return
        try:
            await self._runner
        except asyncio.CancelledError:
            if not self._runner.cancelled():
                raise


async def connect_stdio(config: ServerConfig) -> ToolSession:
    """Default connector: launches the configured command and performs the handshake.

    Args:
        config: The resolved server configuration.

    Returns:
        A connected StdioToolSession.
    """
    command, args, env = build_launch_command(config)
    params = StdioServerParameters(command=command, args=args, env=env)
    client_info = types.Implementation(name=config.implementation_name, version=config.implementation_version)
    session = StdioToolSession(config.name, params, client_info, keep_alive=config.keep_alive)
    logger.debug(f"Launching MCP server {config.name}: {command} {' '.join(args)}")
    await session.start()
    return session
