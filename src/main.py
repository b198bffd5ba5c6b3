"""FastAPI application for the contact unlock service.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.cu_admin.api.router import router as admin_router
from src.cu_common.database import engine
from src.cu_common.errors import AppError
from src.cu_common.redis_client import close_redis, redis_available
from src.cu_common.response import error_response
from src.cu_gateway.middleware.request_log import RequestLogMiddleware
from src.cu_unlock.api.router import router as unlock_router
from src.cu_wallet.api.router import router as wallet_router

VERSION = "0.1.0"

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: the DB must answer; Redis is optional. Shutdown: dispose."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    await redis_available()
    yield
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(RequestLogMiddleware)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error(
            "%s %s failed: [%s] %s", request.method, request.url.path, exc.code, exc.message
        )
    resp = error_response(exc.code, exc.message, _request_id(request))
    return JSONResponse(status_code=exc.http_status, content=resp.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies use the same 400 `validation_error` shape as service checks."""
    errors = exc.errors()
    message = errors[0].get("msg") if errors else None
    resp = error_response("validation_error", message or "Invalid request.", _request_id(request))
    return JSONResponse(status_code=400, content=resp.model_dump())


app.include_router(unlock_router, prefix="/api/v1")
app.include_router(wallet_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": VERSION}
