import json
import os
from pathlib import Path

from pydantic import ValidationError

from .errors import ConfigError
from .model import McpConfig


class Settings:
    """Central configuration for environment variables."""

    @property
    def config_file(self) -> Path:
        return Path(os.getenv("MCP_CONFIG_FILE", "config.json"))

    @property
    def log_level(self) -> str:
        return os.getenv("MCP_LOG_LEVEL", "INFO").upper()

    @property
    def api_host(self) -> str:
        return os.getenv("MCP_API_HOST", "0.0.0.0")

    @property
    def api_port(self) -> int:
        return int(os.getenv("MCP_API_PORT", "8080"))

settings = Settings()


def load_mcp_config(path: Path) -> McpConfig:
    """Loads the MCP block from a JSON file.

    The block may be the whole document or sit under an "mcp" key.

    Raises:
        ConfigError: If the file is missing or does not hold a valid MCP block.
    """
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid JSON in {path}: {e}") from e
    if isinstance(data, dict) and isinstance(data.get("mcp"), dict):
        data = data["mcp"]
    try:
        return McpConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid mcp configuration in {path}: {e}") from e
