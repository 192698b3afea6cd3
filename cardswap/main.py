import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cardswap.api import (
    collection_router,
    friend_rooms_router,
    health_router,
    packs_router,
    trade_requests_router,
    trades_router,
)
from cardswap.config import settings
from cardswap.db.database import dispose_db, init_db
from cardswap.models.failure import ApiResponse, KnownError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    await init_db()
    logger.info("STARTUP", extra={"service": settings.app_name})
    yield
    await dispose_db()


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("cardswap"),
    lifespan=lifespan,
)

app.include_router(collection_router)
app.include_router(friend_rooms_router)
app.include_router(health_router)
app.include_router(packs_router)
app.include_router(trade_requests_router)
app.include_router(trades_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(KnownError)
async def known_error_handler(request: Request, exc: KnownError) -> JSONResponse:
    """Render typed failures in the ApiResponse envelope."""
    logger.info(
        "KNOWN_FAILURE",
        extra={"path": request.url.path, "kind": exc.kind.value, "status": exc.status_code},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def unknown_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("UNHANDLED_ERROR", extra={"path": request.url.path})
    return JSONResponse(
        status_code=500,
        content=ApiResponse.unknown_failure(detail=type(exc).__name__).model_dump(mode="json"),
    )
