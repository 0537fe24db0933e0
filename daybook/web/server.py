"""Mini App API and cron endpoints served with uvicorn.

Run as a separate service next to the polling bot; the external scheduler
calls ``/api/cron/*`` with ``Authorization: Bearer $CRON_SECRET``.

Optional environment:
    WEB_HOST   (default 127.0.0.1)
    WEB_PORT   (default 8000)
"""

from __future__ import annotations

import logging
import os

import uvicorn
from fastapi import FastAPI

from daybook.infra.bot_client import shutdown_bot
from daybook.infra.config import load_settings
from daybook.infra.logging_config import configure_logging
from daybook.web.api import create_app

LOGGER = logging.getLogger(__name__)


def build_app() -> FastAPI:
    settings = load_settings()
    app = create_app(settings)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await shutdown_bot()
        app.state.store.close()

    return app


def main() -> None:
    configure_logging()
    host = os.getenv("WEB_HOST", "127.0.0.1")
    port = int(os.getenv("WEB_PORT", "8000"))
    app = build_app()
    LOGGER.info("Web API listening on %s:%s", host, port)
    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
