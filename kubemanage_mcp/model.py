"""Data models for MCP server configuration and metadata."""
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_IMPLEMENTATION_NAME = "kubemanage-mcp-client"
DEFAULT_IMPLEMENTATION_VERSION = "0.1.0"
DEFAULT_STARTUP_TIMEOUT = 20.0
DEFAULT_KEEP_ALIVE = 45.0


class McpServerTemplate(BaseModel):
    """One server entry as written in the configuration file."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(default="", description="Unique name of the server")
    display_name: str = Field(default="", alias="displayName", description="Human readable name")
    description: str = Field(default="", description="Description of the server")
    image: str = Field(default="", description="Container image, used to synthesize docker args")
    command: str = Field(default="", description="Executable used to launch the server")
    args: list[str] = Field(default_factory=list, description="Arguments passed to the command")
    env: dict[str, str] = Field(default_factory=dict, description="Environment overrides")
    default_tool: str = Field(default="", alias="defaultTool", description="Tool used by default calls")
    homepage: str = Field(default="", description="Project homepage")
    tags: list[str] = Field(default_factory=list, description="Free-form labels")


class McpConfig(BaseModel):
    """Global MCP block of the application configuration."""
    model_config = ConfigDict(populate_by_name=True)

    enable: bool = False
    implementation_name: str = Field(default="", alias="implementationName")
    implementation_version: str = Field(default="", alias="implementationVersion")
    startup_timeout: str = Field(default="", alias="startupTimeout", description="Duration string, e.g. 20s")
    keep_alive: str = Field(default="", alias="keepAlive", description="Duration string, e.g. 45s")
    default_server: str = Field(default="", alias="defaultServer")
    default_tool: str = Field(default="", alias="defaultTool")
    # legacy single-server fields
    command: str = ""
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    servers: list[McpServerTemplate] = Field(default_factory=list)


class ServerConfig(BaseModel):
    """Fully resolved launch configuration of one MCP server."""
    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str = ""
    description: str = ""
    image: str = ""
    homepage: str = ""
    tags: list[str] = Field(default_factory=list)
    implementation_name: str = DEFAULT_IMPLEMENTATION_NAME
    implementation_version: str = DEFAULT_IMPLEMENTATION_VERSION
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    startup_timeout: float = DEFAULT_STARTUP_TIMEOUT
    keep_alive: float = DEFAULT_KEEP_ALIVE
    default_tool: str = ""

    def meta(self) -> "ServerMeta":
        return ServerMeta(
            name=self.name,
            display_name=self.display_name,
            description=self.description,
            default_tool=self.default_tool,
            image=self.image,
            homepage=self.homepage or None,
            tags=list(self.tags) or None,
        )


class ServerMeta(BaseModel):
    """Read-only view of a registered server, as exposed to API consumers."""
    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    description: str
    default_tool: str
    image: str
    homepage: str | None = None
    tags: list[str] | None = None


class CreateServerOptions(BaseModel):
    """Request to register a new server at runtime."""
    name: str = Field(description="Unique name of the server")
    display_name: str = ""
    description: str = ""
    image: str = ""
    command: str = ""
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    default_tool: str = ""
    homepage: str = ""
    tags: list[str] = Field(default_factory=list)
    set_default: bool = Field(default=False, description="Make the new server the registry default")

    def to_template(self) -> McpServerTemplate:
        return McpServerTemplate.model_validate(self.model_dump(exclude={"set_default"}))
