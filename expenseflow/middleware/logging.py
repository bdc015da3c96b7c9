import time
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("access")

class LoggingMiddleware(BaseHTTPMiddleware):
    """Access log line per request, with the acting user once authenticated"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        client = request.client.host if request.client else "unknown"

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"💥 {request.method} {request.url.path} - Client: {client} - unhandled error")
            raise

        process_time = time.perf_counter() - start_time

        # Set by get_current_user
        user_id = getattr(request.state, "current_user_id", None)
        user_label = f"user {user_id}" if user_id is not None else "anonymous"
        marker = "✅" if response.status_code < 400 else "⚠️"

        logger.info(
            f"{marker} {request.method} {request.url.path} - "
            f"Status: {response.status_code} - "
            f"Client: {client} ({user_label}) - "
            f"Time: {process_time:.4f}s"
        )

        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        return response
