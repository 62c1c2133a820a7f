from abc import abstractmethod
from typing import Optional
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse
from loguru import logger
import uvicorn

from starlette.types import Lifespan
from fastapi.applications import AppType
from warden.config import ServerConfig


class WebServer:
    """Async web server for admission webhooks using FastAPI."""

    def __init__(self, config: ServerConfig, lifespan: Optional[Lifespan[AppType]] = None):
        self.config = config
        self.app = FastAPI(
            debug=config.debug,
            default_response_class=ORJSONResponse,
            lifespan=lifespan,
        )
        self._setup_routes()

    @abstractmethod
    def _setup_routes(self):
        """
        Setup web routes.
        Example:
        self.app.add_api_route('/route', self.handle_route, methods=["GET"])
        """
        raise NotImplementedError()

    def uvicorn_options(self) -> dict:
        """Build the listener options passed to uvicorn."""
        options = {
            "host": self.config.bind_address,
            "port": self.config.port,
        }

        if self.config.tls_cert_path and self.config.tls_key_path:
            options["ssl_certfile"] = str(self.config.tls_cert_path)
            options["ssl_keyfile"] = str(self.config.tls_key_path)
        elif self.config.require_tls:
            raise ValueError("TLS certificate and key are required to serve admission webhooks")

        return options

    def run(self):
        """Run the webhook server."""
        uvicorn_kwargs = self.uvicorn_options()

        logger.info(f"Starting server on {self.config.bind_address}:{self.config.port}")
        if "ssl_certfile" in uvicorn_kwargs:
            logger.info("TLS enabled")
        else:
            logger.warning("Starting server without TLS; intended for local development only")

        uvicorn.run(
            self.app,
            log_level="debug" if self.config.debug else "info",
            **uvicorn_kwargs,
        )
