"""
FastAPI application factory.
"""

import itertools
import logging
import threading

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flir_ptu import __version__
from flir_ptu.api.models import make_response
from flir_ptu.config.models import AppConfig


logger = logging.getLogger(__name__)

# Global server transaction ID counter (thread-safe)
_transaction_counter = itertools.count(1)
_transaction_lock = threading.Lock()


def get_next_transaction_id() -> int:
    """
    Get next server transaction ID (thread-safe).

    Returns:
        Incremented transaction ID.
    """
    with _transaction_lock:
        return next(_transaction_counter)


def create_app(config: AppConfig) -> FastAPI:
    """
    Create FastAPI application instance.

    Device routes are included by the caller, which also stores the
    controller in ``app.state.ptu``.

    Args:
        config: Application configuration.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="FLIR PTU Driver",
        description="HTTP driver for FLIR pan-tilt units over serial or TCP",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch unhandled exceptions and return an error envelope."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)

        client_id = 0
        try:
            if request.method == "GET":
                client_id = int(request.query_params.get("ClientTransactionID", 0))
            elif request.method == "PUT":
                form_data = await request.form()
                client_id = int(form_data.get("ClientTransactionID", 0))
        except (ValueError, TypeError):
            client_id = 0

        response = make_response(
            value=None,
            client_id=client_id,
            server_id=get_next_transaction_id(),
            error=exc
        )
        # Errors travel in the envelope, not the status code
        return JSONResponse(status_code=200, content=response.model_dump())

    @app.get("/management/apiversions")
    async def get_api_versions():
        """Return supported API versions."""
        return {"Value": [1]}

    @app.get("/management/v1/description")
    async def get_server_description():
        """Return server description."""
        transport = "simulator" if config.simulator.enabled else (config.transport.port or "unset")
        return {
            "Value": {
                "ServerName": "FLIR PTU Driver",
                "Manufacturer": "FLIR Commercial Systems",
                "ManufacturerVersion": __version__,
                "Location": f"{config.server.ip}:{config.server.port}",
                "Transport": transport,
            }
        }

    logger.info("FastAPI application created")
    return app
