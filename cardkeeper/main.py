import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cardkeeper.api import (
    cards_router,
    collections_router,
    health_router,
    notifications_router,
)
from cardkeeper.config import settings
from cardkeeper.models.failure import ApiResponse, KnownError, RefusalError
from cardkeeper.remote.client import HttpRemoteStore
from cardkeeper.sync.notifications import LoggingNotificationSink, NotificationFeed
from cardkeeper.sync.store import CollectionStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    remote = HttpRemoteStore.from_settings(settings)
    feed = NotificationFeed(
        max_items=settings.notification_feed_size,
        forward=LoggingNotificationSink(),
    )
    store = CollectionStore.from_settings(settings, remote, feed)
    app.state.feed = feed
    app.state.store = store

    await store.start()
    try:
        yield
    finally:
        await store.close()
        await remote.aclose()


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("cardkeeper"),
    lifespan=lifespan,
)


@app.exception_handler(KnownError)
async def known_error_handler(_request: Request, exc: KnownError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(mode="json"),
    )


@app.exception_handler(RefusalError)
async def refusal_error_handler(_request: Request, exc: RefusalError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("UNHANDLED_ERROR", extra={"error_type": type(exc).__name__})
    return JSONResponse(
        status_code=500,
        content=ApiResponse.unknown_failure(detail=type(exc).__name__).model_dump(mode="json"),
    )


app.include_router(cards_router)
app.include_router(collections_router)
app.include_router(health_router)
app.include_router(notifications_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
