import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging_config import req_id_var

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        # Preflight is answered by CORS; nothing to correlate
        if request.method == "OPTIONS":
            return await call_next(request)

        # Prefer client-provided ID to enable end-to-end correlation
        req_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        token = req_id_var.set(req_id)
        try:
            response = await call_next(request)
        finally:
            req_id_var.reset(token)
        response.headers.setdefault(REQUEST_ID_HEADER, req_id)
        return response
