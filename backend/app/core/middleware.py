"""Custom ASGI middleware used by the FastAPI app."""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.core.logging import caller_ctx_var, request_id_ctx_var


class RequestContextLogMiddleware(BaseHTTPMiddleware):
    """Injects request IDs and emits one structured access log per request."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        request_token = request_id_ctx_var.set(request_id)
        caller_token = caller_ctx_var.set("-")
        start = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            # Set by the permission dependencies; the endpoint runs in its own context.
            auth = getattr(request.state, "auth", None)
            logger.bind(
                caller=auth.caller if auth else "-",
                role=auth.primary_role if auth else None,
                method=request.method,
                path=str(request.url.path),
                status=response.status_code if response else 500,
                duration_ms=round(duration_ms, 2),
            ).info("request_completed")
            if response is not None:
                response.headers.setdefault("X-Request-ID", request_id)
            request_id_ctx_var.reset(request_token)
            caller_ctx_var.reset(caller_token)


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject JSON bodies declared larger than ``MAX_REQUEST_BYTES``."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        content_length = request.headers.get("content-length")
        if content_length is not None:
            try:
                if int(content_length) > settings.MAX_REQUEST_BYTES:
                    return JSONResponse(
                        status_code=413,
                        content={"detail": "Cuerpo de la solicitud demasiado grande"},
                    )
            except ValueError:
                pass

        return await call_next(request)
