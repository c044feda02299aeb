import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from campusnet.config import settings
from campusnet.exceptions import CampusNetError

logger = logging.getLogger(__name__)


def add_exception_handlers(app: FastAPI) -> None:
    """
    Registers exception handlers with the FastAPI app.

    ``HTTPException`` and validation errors keep FastAPI's own
    ``{"detail": ...}`` rendering; domain errors use the same key and add
    a machine-readable ``code``.
    """
    @app.exception_handler(CampusNetError)
    async def campusnet_exception_handler(request: Request, exc: CampusNetError):
        content = {"detail": exc.message, "code": exc.code}
        if exc.details is not None:
            content["details"] = exc.details
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        """
        Unique-constraint violations, usually a duplicate insert racing a
        concurrent request past the service-level existence check.
        """
        logger.info("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
        return JSONResponse(status_code=409, content={"detail": "Resource already exists", "code": "CONFLICT"})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all for unhandled exceptions.
        """
        logger.error(
            "Unhandled exception on %s %s: %s", request.method, request.url.path, exc,
            exc_info=True,
        )
        message = str(exc) if settings.DEBUG else "An internal error occurred. Please try again later."
        return JSONResponse(status_code=500, content={"detail": message, "code": "INTERNAL_ERROR"})
