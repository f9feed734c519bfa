"""Application entry point for the CFL freight API service."""

from fastapi import Depends, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.routes.auth import router as auth_router
from app.api.routes.dashboard import router as dashboard_router
from app.api.routes.fletes import router as fletes_router
from app.api.routes.mantenedores import router as mantenedores_router
from app.core.cache import TTLCache
from app.core.config import settings
from app.core.db import get_session
from app.core.db_errors import integrity_error_to_http
from app.core.logging import setup_logging
from app.core.middleware import BodySizeLimitMiddleware, RequestContextLogMiddleware
from app.core.rate_limit import init_rate_limiter

setup_logging()

app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)

init_rate_limiter(app)

app.add_middleware(RequestContextLogMiddleware)


def _cors_origins() -> list[str]:
    if settings.ENV == "prod":
        if not settings.CORS_ALLOWED_ORIGINS:
            raise RuntimeError("CORS_ALLOWED_ORIGINS must be configured for prod")
        return settings.CORS_ALLOWED_ORIGINS
    return settings.CORS_ALLOWED_ORIGINS or ["http://localhost:5173"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "X-Request-ID",
        "X-CFL-User-Id",
        "X-CFL-Username",
        "X-CFL-Role",
    ],
)

app.add_middleware(BodySizeLimitMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(IntegrityError)
async def integrity_exception_handler(request: Request, exc: IntegrityError):
    http_exc = integrity_error_to_http(exc)
    if http_exc is None:
        logger.bind(path=request.url.path, error=str(exc.orig)).error("integrity_error_unmapped")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Error interno del servidor"},
        )
    logger.bind(path=request.url.path, error=str(exc.orig)).warning("integrity_error_conflict")
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.bind(path=request.url.path).exception("unhandled_error")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Error interno del servidor"},
    )


@app.on_event("startup")
async def startup_event():
    app.state.auth_cache = TTLCache(
        ttl_seconds=settings.AUTH_CACHE_TTL_SEC, max_entries=settings.AUTH_CACHE_MAX_ENTRIES
    )
    logger.bind(env=settings.ENV, ttl=settings.AUTH_CACHE_TTL_SEC).info("app_started")


@app.get("/", tags=["system"])
def root() -> dict[str, str]:
    return {"name": settings.APP_NAME, "status": "ok"}


@app.get("/health", tags=["system"], summary="Liveness and database probe")
async def health(session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.bind(error=str(exc)).warning("health_db_unreachable")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"healthy": False, "db": {"connected": False, "database": settings.DB_NAME}},
        )
    return {"healthy": True, "db": {"connected": True, "database": settings.DB_NAME}}


app.include_router(auth_router, prefix="/api")
app.include_router(dashboard_router, prefix="/api")
app.include_router(fletes_router, prefix="/api")
app.include_router(mantenedores_router, prefix="/api")
