from __future__ import annotations

import logging
import uuid

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.errors import error_response


HEADER = "X-Correlation-Id"

logger = logging.getLogger("correlation_id")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reads or creates X-Correlation-Id, stores it on request.state and echoes it."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        incoming = (request.headers.get(HEADER) or "").strip()
        cid = incoming[:128] if incoming else str(uuid.uuid4())
        request.state.correlation_id = cid

        try:
            response: Response = await call_next(request)
        except Exception:
            logger.exception("request failed cid=%s %s %s", cid, request.method, request.url.path)
            response = JSONResponse(
                status_code=500,
                content=error_response("internal_error", "Unexpected server error", {"correlation_id": cid}),
            )

        response.headers[HEADER] = cid
        return response
