"""
Entry point for the Song Artwork service.

Creates the FastAPI application instance and starts the Uvicorn ASGI
server when executed directly.
"""

import uvicorn

import artwork_service.server_factory
import configuration

fastapi_application = artwork_service.server_factory.create_application()

if __name__ == "__main__":
    application_configuration = configuration.ApplicationConfiguration()

    uvicorn.run(
        "main:fastapi_application",
        host=application_configuration.application_host,
        port=application_configuration.application_port,
        # Keep the structlog JSON handlers installed by the factory.
        log_config=None,
    )
