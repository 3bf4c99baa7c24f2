# rollsync/error_handlers.py

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rollsync.errors import (
    CredentialExpiredError,
    HandlerError,
    PromptNotFound,
    RollSyncError,
    SettingsError,
    TransportError,
)

logger = logging.getLogger(__name__)


def _error(request: Request, status_code: int, message: str, **extra) -> JSONResponse:
    content = {"error": message, "request_id": getattr(request.state, "request_id", None)}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def register_error_handlers(app: FastAPI):
    @app.exception_handler(PromptNotFound)
    async def handle_prompt_not_found(request: Request, e: PromptNotFound):
        return _error(request, 404, str(e))

    @app.exception_handler(SettingsError)
    async def handle_settings_error(request: Request, e: SettingsError):
        return _error(request, 400, str(e), missing=e.missing)

    @app.exception_handler(CredentialExpiredError)
    async def handle_credential_expired(request: Request, e: CredentialExpiredError):
        return _error(request, 401, str(e))

    @app.exception_handler(TransportError)
    async def handle_transport_error(request: Request, e: TransportError):
        return _error(request, 502, str(e))

    @app.exception_handler(HandlerError)
    async def handle_handler_error(request: Request, e: HandlerError):
        logger.error(f"Handler {e.handler_name} failed during request", exc_info=e)
        return _error(request, 500, str(e), handler=e.handler_name)

    @app.exception_handler(RollSyncError)
    async def handle_rollsync_error(request: Request, e: RollSyncError):
        logger.error("Roll sync error", exc_info=e)
        return _error(request, 500, str(e))

    @app.exception_handler(Exception)
    async def handle_exception(request: Request, e: Exception):
        logger.error("Unhandled exception", exc_info=e)
        return _error(request, 500, "Internal server error")
