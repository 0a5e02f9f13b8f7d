"""Error kinds raised by the MCP session registry."""


class McpClientError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(McpClientError, ValueError):
    """Invalid server configuration (names, command, args or durations)."""


class ConnectError(McpClientError):
    """The tool provider could not be launched or did not finish its handshake."""


class ClientClosedError(ConnectError):
    """The client was closed and will not connect again."""


class ToolError(McpClientError):
    """A tool call failed remotely or returned no result."""


class NotFoundError(McpClientError, LookupError):
    """No server is registered under the requested name."""


class AlreadyExistsError(McpClientError):
    """A server with the same name is already registered."""
