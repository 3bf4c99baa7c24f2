# rollsync/app.py

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rollsync.error_handlers import register_error_handlers
from rollsync.logging_config import request_id_var
from rollsync.sync_manager import SyncEngine

logger = logging.getLogger(__name__)

PUBLIC_API_PATHS = ("/api/docs", "/api/openapi")


def create_app(engine: SyncEngine, session_factory=None) -> FastAPI:
    """
    Build the local control API around an already-built engine.

    The engine connects on startup when sync is enabled and is always
    disconnected on shutdown.
    """
    start_time = time.time()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Roll sync API starting")
        if engine.settings.enabled:
            await engine.connect()
        yield
        await engine.disconnect()
        logger.info("Roll sync API shutting down")

    application = FastAPI(
        title="Roll Sync API",
        description="Local control surface for the roll sync engine",
        version="1.0.0",
        lifespan=lifespan,
    )
    application.state.engine = engine
    application.state.session_factory = session_factory

    @application.middleware("http")
    async def add_request_id_and_auth(request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            if request.url.path.startswith("/api/") and not request.url.path.startswith(PUBLIC_API_PATHS):
                provided_key = request.headers.get("X-API-Key")
                if not provided_key or provided_key != engine.settings.api_key:
                    return JSONResponse(
                        status_code=403,
                        content={"error": "Invalid or missing X-API-Key", "request_id": request_id},
                    )

            logger.info(f"[{request_id}] {request.method} {request.url.path}")
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            request_id_var.reset(token)

    @application.get("/health")
    async def health_check():
        return {
            "status": "ok",
            "connected": engine.connected,
            "uptime_seconds": time.time() - start_time,
            "timestamp": time.time(),
        }

    from routes.prompts import prompts_router
    from routes.sync import sync_router

    application.include_router(sync_router, prefix="/api", tags=["Sync"])
    application.include_router(prompts_router, prefix="/api", tags=["Prompts"])

    register_error_handlers(application)
    return application
