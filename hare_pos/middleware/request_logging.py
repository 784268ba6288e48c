"""
Request Logging Middleware: log slow and failed API requests.

Never blocks a request; it only observes status codes and durations.
Bearer tokens are never logged.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import json
import logging
import time
from typing import Dict

logger = logging.getLogger("hare_pos.requests")

# Requests slower than this are logged as slow
SLOW_REQUEST_THRESHOLD = 5.0  # seconds


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.time()
        context = self._build_context(request)

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            self._log_error_request(context, str(e), duration)
            raise

        duration = time.time() - start_time
        if duration > SLOW_REQUEST_THRESHOLD:
            logger.warning(f"SLOW REQUEST ({duration:.2f}s): {json.dumps(context)}",
                           extra={"duration_ms": round(duration * 1000, 1)})
        if response.status_code >= 400:
            self._log_failed_request(context, response.status_code, duration)
        return response

    def _build_context(self, request: Request) -> Dict:
        return {
            "method": request.method,
            "path": request.url.path,
            "query": str(request.url.query) if request.url.query else None,
            "client_ip": request.client.host if request.client else "unknown",
            "user_agent": request.headers.get("user-agent", "unknown")[:200],
        }

    def _log_failed_request(self, context: Dict, status_code: int, duration: float):
        entry = {"event_type": "failed_request", "status_code": status_code, **context}
        extra = {"duration_ms": round(duration * 1000, 1)}
        if status_code >= 500:
            logger.error(f"SERVER ERROR ({status_code}): {json.dumps(entry)}", extra=extra)
        elif status_code == 429:
            logger.warning(f"RATE LIMITED: {json.dumps(entry)}", extra=extra)
        elif status_code in (401, 403):
            logger.warning(f"UNAUTHORIZED ({status_code}): {json.dumps(entry)}", extra=extra)
        else:
            logger.info(f"CLIENT ERROR ({status_code}): {json.dumps(entry)}", extra=extra)

    def _log_error_request(self, context: Dict, error: str, duration: float):
        entry = {"event_type": "error_request", "error": error[:500], **context}
        logger.error(f"REQUEST ERROR: {json.dumps(entry)}", extra={"duration_ms": round(duration * 1000, 1)})
