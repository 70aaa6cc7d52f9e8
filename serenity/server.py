"""Process entry point: start the application and serve it with uvicorn."""
from __future__ import annotations

import asyncio

import uvicorn

from serenity.app import Application, create_application
from serenity.core.config import get_settings
from serenity.core.logging import get_logger

logger = get_logger(__name__)


class Server(uvicorn.Server):
    """uvicorn server that stops the application before closing its sockets."""

    def __init__(self, application: Application, config: uvicorn.Config) -> None:
        super().__init__(config)
        self.application = application

    async def shutdown(self, sockets=None) -> None:
        logger.info("Shutdown signal received")
        await self.application.stop()
        await super().shutdown(sockets=sockets)


async def serve(application: Application) -> None:
    app = await application.start()
    settings = application.settings
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        lifespan="off",
        proxy_headers=False,
        log_config=None,
        log_level=settings.log_level,
    )
    server = Server(application, config)
    logger.info("Server listening", host=settings.host, port=settings.port, environment=settings.app_env)
    try:
        await server.serve()
    finally:
        if not application.is_shutting_down:
            await application.stop()


def main() -> None:
    application = create_application(get_settings())
    try:
        asyncio.run(serve(application))
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        logger.error("Server terminated", error=str(exc))
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
