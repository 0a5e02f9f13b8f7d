"""Resolution of raw MCP configuration into launchable server configs."""
import os
import re
from dataclasses import dataclass, field

from .errors import ConfigError
from .model import (
    DEFAULT_IMPLEMENTATION_NAME,
    DEFAULT_IMPLEMENTATION_VERSION,
    DEFAULT_KEEP_ALIVE,
    DEFAULT_STARTUP_TIMEOUT,
    McpConfig,
    McpServerTemplate,
    ServerConfig,
)

DEFAULT_COMMAND = "docker"
LEGACY_SERVER_NAME = "default"

# flags in front of which `-e KEY=VALUE` pairs are spliced for `docker run`
_DOCKER_ENV_ANCHORS = ("--rm", "-i", "-d", "-it")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


@dataclass(frozen=True)
class ResolverDefaults:
    """Global values every server template is resolved against."""
    implementation_name: str = DEFAULT_IMPLEMENTATION_NAME
    implementation_version: str = DEFAULT_IMPLEMENTATION_VERSION
    startup_timeout: float = DEFAULT_STARTUP_TIMEOUT
    keep_alive: float = DEFAULT_KEEP_ALIVE
    command: str = ""
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    default_tool: str = ""


def parse_duration(value: str, field_name: str) -> float:
    """Parses a Go style duration string ("20s", "1m30s", "500ms") into seconds.

    Args:
        value: The duration string.
        field_name: Configuration key, used in the error message.

    Returns:
        The duration in seconds.

    Raises:
        ConfigError: If the string is not a valid duration.
    """
    text = value.strip()
    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ConfigError(f"invalid duration for mcp.{field_name}: {value!r}")

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            raise ConfigError(f"invalid duration for mcp.{field_name}: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    return sign * total


def merge_env(base: dict[str, str], override: dict[str, str]) -> dict[str, str]:
    return {**base, **override}


def first_non_empty(*values: str) -> str:
    for value in values:
        if value and value.strip():
            return value
    return ""


def extract_image_from_args(args: list[str]) -> str:
    """Best-effort guess of the image reference: the last plain token of the args."""
    for arg in reversed(args):
        if arg.startswith("-") or "=" in arg:
            continue
        return arg
    return ""


def defaults_from_config(cfg: McpConfig) -> ResolverDefaults:
    startup_timeout = DEFAULT_STARTUP_TIMEOUT
    if cfg.startup_timeout:
        startup_timeout = parse_duration(cfg.startup_timeout, "startupTimeout")
    keep_alive = DEFAULT_KEEP_ALIVE
    if cfg.keep_alive:
        keep_alive = parse_duration(cfg.keep_alive, "keepAlive")

    return ResolverDefaults(
        implementation_name=cfg.implementation_name or DEFAULT_IMPLEMENTATION_NAME,
        implementation_version=cfg.implementation_version or DEFAULT_IMPLEMENTATION_VERSION,
        startup_timeout=startup_timeout,
        keep_alive=keep_alive,
        command=cfg.command,
        args=tuple(cfg.args),
        env=dict(cfg.env),
        default_tool=cfg.default_tool,
    )


def resolve_server(template: McpServerTemplate, defaults: ResolverDefaults) -> ServerConfig:
    """Resolves one server template against the global defaults.

    Args:
        template: The per-server values; empty fields fall back to the defaults.
        defaults: Global values shared by every server of the registry.

    Returns:
        The resolved ServerConfig.

    Raises:
        ConfigError: If the server has no name or no launch arguments.
    """
    if not template.name.strip():
        raise ConfigError("found an MCP server without a name, check the configuration")

    command = template.command or defaults.command or DEFAULT_COMMAND

    args = list(template.args)
    if not args:
        if defaults.args:
            args = list(defaults.args)
        elif template.image and command.lower() == DEFAULT_COMMAND:
            args = ["run", "--rm", "-i", template.image]
    if not args:
        raise ConfigError(f"server {template.name} has no launch args configured")

    return ServerConfig(
        name=template.name,
        display_name=first_non_empty(template.display_name, template.name),
        description=template.description,
        image=first_non_empty(template.image, extract_image_from_args(args)),
        homepage=template.homepage,
        tags=list(template.tags),
        implementation_name=defaults.implementation_name,
        implementation_version=defaults.implementation_version,
        command=command,
        args=args,
        env=merge_env(defaults.env, template.env),
        startup_timeout=defaults.startup_timeout,
        keep_alive=defaults.keep_alive,
        default_tool=template.default_tool or defaults.default_tool,
    )


def build_server_configs(cfg: McpConfig | None) -> tuple[list[ServerConfig], str]:
    """Resolves the MCP block into per-server configs and the default server name.

    Args:
        cfg: The global MCP configuration.

    Returns:
        The resolved configs in configuration order and the default server name.

    Raises:
        ConfigError: On a missing block, no servers, an invalid duration, a server
            without name or args, duplicate names or an unknown default server.
    """
    if cfg is None:
        raise ConfigError("no mcp configuration found")

    templates = list(cfg.servers)
    if not templates and cfg.command:
        # legacy single-command configuration
        templates = [McpServerTemplate(
            name=LEGACY_SERVER_NAME,
            display_name="Default MCP Server",
            description="Default MCP server generated from the legacy configuration",
            command=cfg.command,
            args=list(cfg.args),
            env=dict(cfg.env),
            default_tool=cfg.default_tool,
        )]
    if not templates:
        raise ConfigError("no MCP server configured")

    defaults = defaults_from_config(cfg)
    configs: list[ServerConfig] = []
    seen: set[str] = set()
    for template in templates:
        config = resolve_server(template, defaults)
        if config.name in seen:
            raise ConfigError(f"duplicate MCP server name: {config.name}")
        seen.add(config.name)
        configs.append(config)

    default_server = cfg.default_server or configs[0].name
    if default_server not in seen:
        raise ConfigError(f"default server {default_server} is not configured")
    return configs, default_server


def build_launch_command(config: ServerConfig) -> tuple[str, list[str], dict[str, str]]:
    """Computes the command, arguments and process environment used to spawn a server.

    For `docker run` the configured env is rendered as `-e KEY=VALUE` pairs in
    front of the first of `--rm`, `-i`, `-d` or `-it` (or right after `run`);
    every other command receives it as environment overrides.

    Returns:
        A tuple of command, argument list and full process environment.
    """
    args = list(config.args)
    process_env = dict(os.environ)
    if not config.env:
        return config.command, args, process_env

    if config.command == DEFAULT_COMMAND and args and args[0] == "run":
        insert_pos = 1
        for i, arg in enumerate(args[1:], start=1):
            if arg in _DOCKER_ENV_ANCHORS:
                insert_pos = i
                break
        env_args: list[str] = []
        for key in sorted(config.env):
            env_args += ["-e", f"{key}={config.env[key]}"]
        args[insert_pos:insert_pos] = env_args
        return config.command, args, process_env

    process_env.update(config.env)
    return config.command, args, process_env
