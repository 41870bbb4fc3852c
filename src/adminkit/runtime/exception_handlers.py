"""
Exception handlers for adminkit FastAPI applications.

Errors raised outside the API run loop (for example while decoding the
request) are answered with the same ``{"code", "message"}`` body the run loop
produces:

- WebError subclasses: their declared response code
- other AdminKitError: 400
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from adminkit.runtime.errors import AdminKitError, WebError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the adminkit exception handlers on a FastAPI application.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(WebError)
    async def web_error_handler(request: Request, exc: WebError) -> Response:
        """Convert web errors to their declared status."""
        return JSONResponse(status_code=exc.response_code, content=exc.to_body())

    @app.exception_handler(AdminKitError)
    async def adminkit_error_handler(request: Request, exc: AdminKitError) -> Response:
        """Convert other adminkit errors to 400 Bad Request."""
        logger.info("%s %s -> 400: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={"code": 0, "message": str(exc)})
