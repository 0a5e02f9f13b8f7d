from .bootstrap import init_from_config, load_mcp_api
from .client import SessionClient
from .config import load_mcp_config, settings
from .content import collect_text, text_content
from .errors import AlreadyExistsError, ClientClosedError, ConfigError, ConnectError, McpClientError, \
    NotFoundError, ToolError
from .manager import McpManager
from .model import CreateServerOptions, McpConfig, McpServerTemplate, ServerConfig, ServerMeta
from .resolver import build_launch_command, build_server_configs
from .transport import StdioToolSession, ToolSession, connect_stdio

__all__ = [
    "init_from_config",
    "load_mcp_api",
    "load_mcp_config",
    "settings",
    "SessionClient",
    "McpManager",
    "McpConfig",
    "McpServerTemplate",
    "ServerConfig",
    "ServerMeta",
    "CreateServerOptions",
    "build_server_configs",
    "build_launch_command",
    "ToolSession",
    "StdioToolSession",
    "connect_stdio",
    "collect_text",
    "text_content",
    "McpClientError",
    "ConfigError",
    "ConnectError",
    "ClientClosedError",
    "ToolError",
    "NotFoundError",
    "AlreadyExistsError",
]
