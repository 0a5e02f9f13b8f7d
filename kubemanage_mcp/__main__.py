import logging
import sys

import uvicorn

from .bootstrap import init_from_config, load_mcp_api
from .config import load_mcp_config, settings

logger = logging.getLogger(__name__)


def main() -> int:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = load_mcp_config(settings.config_file)
    manager = init_from_config(cfg)
    if manager is None:
        return 0

    app = load_mcp_api(manager)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
