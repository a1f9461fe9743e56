from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("app.request")


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.request_started_at = time.time()

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        duration_ms = int((time.time() - request.state.request_started_at) * 1000)
        level = logging.ERROR if response.status_code >= 400 else logging.INFO
        logger.log(
            level,
            "%s %s %s in %sms",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": request_id,
                "user_id": getattr(request.state, "user_id", None),
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response
