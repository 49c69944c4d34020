"""
Application factory and server entry point.
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI

from . import __version__
from .config import RelaySettings
from .relay import RelayHandler
from .routes_fastapi import create_router

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Set the level of the relay loggers only."""
    logging.getLogger("imgproxy_relay").setLevel(level.upper())


def create_app(
    settings: Optional[RelaySettings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Create the relay app.

    Args:
        settings: Relay settings; read from the environment when None
        client: HTTP client for imgproxy calls; the handler creates (and
            closes) its own when None
    """
    settings = settings or RelaySettings.from_env()
    configure_logging(settings.log_level)

    handler = RelayHandler(settings.base_url, settings.relay, client=client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await handler.aclose()
        logger.info("[ImgproxyRelay] Relay handler closed")

    app = FastAPI(title="imgproxy-relay", version=__version__, lifespan=lifespan)
    app.state.relay_handler = handler
    app.state.settings = settings
    app.include_router(create_router(handler, settings.endpoint_path))
    return app


def main() -> None:
    """Run the relay through uvicorn."""
    settings = RelaySettings.from_env()
    uvicorn.run(
        create_app(settings),
        host=os.getenv("IMGPROXY_RELAY_HOST", "127.0.0.1"),
        port=int(os.getenv("IMGPROXY_RELAY_PORT", "3000")),
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
