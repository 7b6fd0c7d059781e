from __future__ import annotations

import os

import uvicorn

from docket.config_manager import ConfigManager
from docket.logging_config import setup_logging


def main() -> None:
    config = ConfigManager(os.getenv("DOCKET_CONFIG_PATH", "config.yaml")).load()
    setup_logging(config.logging.level)
    host = os.getenv("DOCKET_HOST", "0.0.0.0")
    port = int(os.getenv("DOCKET_PORT", "8080"))
    uvicorn.run("docket.web_app:create_app", factory=True, host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
