"""FastAPI server the mail client extension calls for pre-send reviews"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mailreview import config
from mailreview.api.routes.cache import router as cache_router
from mailreview.api.routes.health import router as health_router
from mailreview.api.routes.review import router as review_router
from mailreview.api.routes.settings import router as settings_router
from mailreview.infrastructure.env import ensure_env_loaded, get_optional_env
from mailreview.observability.logging import get_logger
from mailreview.review import ReviewService
from mailreview.storage.sqlite_store import SQLiteKeyValueStore

logger = get_logger(__name__)

ALLOWED_ORIGINS = [
    "http://localhost",
    "http://127.0.0.1",
]


def create_app(service: ReviewService | None = None) -> FastAPI:
    """
    Build the API app.

    With no service given, one is created at startup over the SQLite store
    (MAILREVIEW_DB_PATH) and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if service is not None:
            app.state.review_service = service
            yield
            return

        store = SQLiteKeyValueStore()
        app.state.review_service = await ReviewService.create(store)
        logger.info("Review service ready (db=%s)", store.db_path)
        try:
            yield
        finally:
            app.state.review_service.close()
            store.close()

    app = FastAPI(title="Gemini Mail Review API", version=config.APP_VERSION, lifespan=lifespan)
    app.state.review_service = service

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Only field names go back; values may contain message content
        logger.warning("Validation error on %s: %d errors", request.url.path, len(exc.errors()))
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": "Invalid request format. Please check your request and try again.",
                "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
            },
        )

    extension_origin = get_optional_env("MAILREVIEW_EXTENSION_ORIGIN")
    origins = ALLOWED_ORIGINS + ([extension_origin] if extension_origin else [])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    app.include_router(health_router)
    app.include_router(review_router)
    app.include_router(cache_router)
    app.include_router(settings_router)
    return app


def main() -> None:
    ensure_env_loaded()
    uvicorn.run(create_app(), host=config.API_HOST, port=config.API_PORT)


if __name__ == "__main__":
    main()
