"""Run the service with uvicorn: ``python -m menu_catalog``."""

from __future__ import annotations

import uvicorn

from menu_catalog.config import load_config
from menu_catalog.logging_setup import configure_logging


def main() -> None:
    configure_logging()
    cfg = load_config()
    uvicorn.run("menu_catalog.main:create_app", factory=True, host=cfg.server.host, port=cfg.server.port, log_config=None)


if __name__ == "__main__":
    main()
