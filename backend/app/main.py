"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that sets up
logging, CORS middleware, the feature and status routers, and the error
handlers that turn domain errors into ``{message, details}`` responses.

Example:
    The application can be run with uvicorn:
        $ uvicorn app.main:app --reload

    Or imported and used programmatically:
        >>> from app.main import app
        >>> # Use app in ASGI server
"""

import logging

import fastapi
from fastapi import exceptions, responses
from fastapi.encoders import jsonable_encoder
from fastapi.middleware import cors

from app.api import features, status
from app.core import config, errors
from app.core import logging as app_logging

logger = logging.getLogger(__name__)


async def _domain_error_handler(
    request: fastapi.Request, exc: Exception
) -> responses.JSONResponse:
    """Serialise a DomainError as ``{message, details?}``."""
    assert isinstance(exc, errors.DomainError)
    if exc.status >= 500:
        logger.error(
            "%s %s failed: %s", request.method, request.url.path, exc.message
        )
    return responses.JSONResponse(
        status_code=exc.status, content=jsonable_encoder(exc.to_dict())
    )


async def _request_validation_handler(
    request: fastapi.Request, exc: Exception
) -> responses.JSONResponse:
    """Report request-schema failures with the domain 422 body shape."""
    assert isinstance(exc, exceptions.RequestValidationError)
    return responses.JSONResponse(
        status_code=422,
        content={
            "message": "Validation Failed",
            "details": jsonable_encoder(exc.errors()),
        },
    )


async def _unhandled_error_handler(
    request: fastapi.Request, exc: Exception
) -> responses.JSONResponse:
    """Log unexpected failures and hide their internals from clients."""
    logger.exception(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return responses.JSONResponse(
        status_code=500, content={"message": "Internal Server Error"}
    )


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Configures logging from settings, includes the feature and status
    routers, registers error handlers and adds CORS middleware. CORS
    origins are configured from settings.

    Returns:
        Configured FastAPI application instance ready for ASGI server.

    Example:
        The app can be used with uvicorn or other ASGI servers:
            >>> app = create_app()
            >>> # Or use the module-level app instance:
            >>> from app.main import app
    """
    settings = config.get_settings()
    app_logging.configure_logging(settings.log_level)

    app = fastapi.FastAPI(title="Map Feature Editor", version=settings.app_version)

    app.include_router(features.router)
    app.include_router(status.router)

    app.add_exception_handler(errors.DomainError, _domain_error_handler)
    app.add_exception_handler(
        exceptions.RequestValidationError, _request_validation_handler
    )
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


app = create_app()
