from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .storage import StoreError


logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Wallet auth server is not configured. Set AUTH_SECRET."


class ApiError(Exception):
    """An error reported to the caller as ``{"ok": false, "error": message}``."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status_code)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return _error(exc.status_code, exc.message)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(400, "Invalid JSON body.")


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("[STORAGE] %s %s failed: %s", request.method, request.url.path, exc)
    return _error(500, str(exc) or "Profile store failure.")


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StoreError, store_error_handler)
