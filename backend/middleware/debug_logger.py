"""
Debug Logger Middleware

Logs request/response details of the generation API to <log_dir>/debug.log
for post-session analysis of model drift (raw prompts, raw workflows).
"""

import os
import time
import logging
from logging.handlers import RotatingFileHandler
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Paths we want to capture (prefix match)
_LOGGED_PREFIXES = ("/v1/", "/api/")

# Body size limits to prevent huge logs
_MAX_REQUEST_BODY = 1000
_MAX_RESPONSE_BODY = 2000

# Streaming bodies are passed through untouched
_STREAMING_TYPES = ("application/x-ndjson", "text/event-stream")

# Module-level logger, configured by init_debug_logger()
debug_logger: logging.Logger = logging.getLogger("debug_file")
debug_logger.propagate = False  # Don't spam the console

_log_file_path: str = ""


def _make_handler(path: str) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path, maxBytes=5 * 1024 * 1024, backupCount=1, encoding="utf-8"
    )
    handler.setFormatter(logging.Formatter("[%(asctime)s.%(msecs)03d] %(message)s", datefmt="%H:%M:%S"))
    handler.setLevel(logging.DEBUG)
    return handler


def init_debug_logger(log_dir: str) -> str:
    """
    Set up the file-based debug logger. Call once at startup.
    Truncates the log file for a fresh session. Returns the log path.
    """
    global _log_file_path
    os.makedirs(log_dir, exist_ok=True)
    _log_file_path = os.path.join(log_dir, "debug.log")

    # Truncate for fresh session
    with open(_log_file_path, "w", encoding="utf-8"):
        pass

    for h in debug_logger.handlers:
        h.close()
    debug_logger.handlers.clear()
    debug_logger.addHandler(_make_handler(_log_file_path))
    debug_logger.setLevel(logging.DEBUG)

    debug_logger.info("[STARTUP] Debug logger initialized")
    return _log_file_path


def get_log_file_path() -> str:
    return _log_file_path


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "...(truncated)"
    return text


class DebugLoggerMiddleware(BaseHTTPMiddleware):
    """
    Middleware that logs request/response for generation routes.
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if not debug_logger.handlers or not any(path.startswith(p) for p in _LOGGED_PREFIXES):
            return await call_next(request)

        method = request.method
        req_body = ""
        if method in ("POST", "PUT", "PATCH"):
            body_bytes = await request.body()
            req_body = _truncate(body_bytes.decode("utf-8", errors="replace"), _MAX_REQUEST_BODY)

        body_str = f"  body={req_body}" if req_body else ""
        debug_logger.info(f"[REQ] >>> {method} {path}{body_str}")

        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed = (time.monotonic() - start) * 1000
            debug_logger.error(f"[ERROR] {method} {path}  EXCEPTION  {elapsed:.0f}ms  {type(exc).__name__}: {exc}")
            raise

        elapsed = (time.monotonic() - start) * 1000
        status = response.status_code
        content_type = (response.headers.get("content-type") or "").lower()
        level = "RES" if status < 400 else "ERROR"

        if any(t in content_type for t in _STREAMING_TYPES):
            debug_logger.info(f"[{level}] <<< {method} {path}  {status}  {elapsed:.0f}ms  <stream {content_type}>")
            return response

        body_parts = []
        async for chunk in response.body_iterator:
            body_parts.append(chunk if isinstance(chunk, bytes) else chunk.encode("utf-8"))
        raw = b"".join(body_parts)
        resp_body = _truncate(raw.decode("utf-8", errors="replace"), _MAX_RESPONSE_BODY)
        debug_logger.info(f"[{level}] <<< {method} {path}  {status}  {elapsed:.0f}ms  body={resp_body}")

        # Reconstruct the response since we consumed the body iterator
        return Response(
            content=raw,
            status_code=status,
            headers=dict(response.headers),
            media_type=response.media_type,
        )
