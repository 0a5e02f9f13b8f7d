"""Registry of named MCP session clients."""
import asyncio
import logging
import threading
from types import TracebackType

from .client import SessionClient
from .errors import AlreadyExistsError, ConfigError, NotFoundError
from .model import CreateServerOptions, McpConfig, ServerConfig, ServerMeta
from .resolver import ResolverDefaults, build_server_configs, defaults_from_config, resolve_server
from .transport import Connector

logger = logging.getLogger(__name__)


class McpManager:
    """Holds one SessionClient and its metadata per registered server.

    Membership is append-only. The registry lock only guards the name maps and
    the default name, it is never held while a client connects or closes.
    """

    def __init__(self, configs: list[ServerConfig], default_name: str,
                 defaults: ResolverDefaults | None = None, connector: Connector | None = None) -> None:
        """Creates the registry from resolved configs; no server is started.

        Args:
            configs: Resolved server configurations.
            default_name: Name of the default server, must be one of the configs.
            defaults: Global values used to resolve servers added at runtime.
            connector: Session factory handed to every client.

        Raises:
            ConfigError: On duplicate names or an unknown default name.
        """
        self._lock = threading.Lock()
        self._clients: dict[str, SessionClient] = {}
        self._metas: dict[str, ServerMeta] = {}
        self._connector = connector
        if defaults is None:
            defaults = ResolverDefaults()
            if configs:
                first = configs[0]
                defaults = ResolverDefaults(
                    implementation_name=first.implementation_name,
                    implementation_version=first.implementation_version,
                    startup_timeout=first.startup_timeout,
                    keep_alive=first.keep_alive,
                )
        self.defaults = defaults

        for config in configs:
            if config.name in self._clients:
                raise ConfigError(f"duplicate MCP server name: {config.name}")
            self._clients[config.name] = SessionClient(config, connector=connector)
            self._metas[config.name] = config.meta()

        if default_name and default_name not in self._clients:
            raise ConfigError(f"default server {default_name} is not configured")
        self._default_name = default_name

    @classmethod
    def from_config(cls, cfg: McpConfig, connector: Connector | None = None) -> "McpManager":
        configs, default_name = build_server_configs(cfg)
        manager = cls(configs, default_name, defaults=defaults_from_config(cfg), connector=connector)
        logger.info(f"MCP manager initialized with {len(configs)} server(s), default: {default_name}")
        return manager

    @property
    def default_name(self) -> str:
        with self._lock:
            return self._default_name

    def list_servers(self) -> list[ServerMeta]:
        with self._lock:
            return list(self._metas.values())

    def client(self, name: str) -> SessionClient:
        """Looks up the client of a server.

        Args:
            name: The name of the server.

        Returns:
            The SessionClient registered under that name.

        Raises:
            NotFoundError: If no server has that name.
        """
        with self._lock:
            client = self._clients.get(name)
        if client is None:
            raise NotFoundError(f"MCP server {name!r} not found")
        return client

    def default_client(self) -> SessionClient:
        with self._lock:
            name = self._default_name
            client = self._clients.get(name)
        if client is None:
            raise NotFoundError(f"default MCP server {name!r} not found")
        return client

    def add_server(self, options: CreateServerOptions) -> ServerMeta:
        """Registers a new server at runtime. The server connects on first use.

        Args:
            options: The server definition and whether it becomes the default.

        Returns:
            The metadata of the new server.

        Raises:
            ConfigError: If the name is empty or no launch args can be resolved.
            AlreadyExistsError: If a server with that name is already registered.
        """
        if not options.name.strip():
            raise ConfigError("server name must not be empty")
        with self._lock:
            if options.name in self._clients:
                raise AlreadyExistsError(f"server {options.name} already exists")

        config = resolve_server(options.to_template(), self.defaults)
        client = SessionClient(config, connector=self._connector)
        meta = config.meta()

        with self._lock:
            # re-checked, another caller may have registered the name meanwhile
            if config.name in self._clients:
                raise AlreadyExistsError(f"server {config.name} already exists")
            self._clients[config.name] = client
            self._metas[config.name] = meta
            if options.set_default:
                self._default_name = config.name

        logger.info(f"Registered MCP server {config.name} (default={options.set_default})")
        return meta

    async def close(self) -> None:
        """Closes every client; a failing client does not stop the others."""
        with self._lock:
            clients = list(self._clients.items())

        results = await asyncio.gather(*(client.close() for _, client in clients), return_exceptions=True)
        for (name, _), result in zip(clients, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to close MCP client for server {name}: {result!r}")

    async def __aenter__(self) -> "McpManager":
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None,
                        exc_tb: TracebackType | None) -> None:
        await self.close()
