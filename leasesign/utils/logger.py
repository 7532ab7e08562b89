# leasesign/utils/logger.py

import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

# Request ID of the HTTP request being served, if any
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Event keys whose values are credentials and must never reach a log sink
SECRET_KEYS = frozenset({
    "access_token",
    "refresh_token",
    "code_verifier",
    "pkce_verifier",
    "signature_image",
    "authorization",
})

_app_context: Dict[str, str] = {"app": "Lease Signing Service", "environment": "development"}


def mask_token(token: Optional[str]) -> Optional[str]:
    """Shorten a bearer token so it can appear in logs."""
    if not token:
        return token
    return f"{token[:6]}..."


def add_request_id(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_app_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.update(_app_context)
    return event_dict


def redact_secrets(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Drop provider credentials and signature payloads from the event."""
    for key in SECRET_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    use_json: bool = True,
    log_file: Optional[str] = None,
    app_name: str = "Lease Signing Service",
    environment: str = "development",
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Console output is JSON in production and plain text elsewhere; the
    optional log file is always JSON.
    """
    _app_context.update(app=app_name, environment=environment)
    level = getattr(logging, log_level.upper())

    shared_processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        add_app_context,
        redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    def handler_for(stream_handler: logging.Handler, renderer) -> logging.Handler:
        stream_handler.setLevel(level)
        stream_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=shared_processors + [renderer],
                foreign_pre_chain=shared_processors,
            )
        )
        return stream_handler

    console_renderer = (
        structlog.processors.JSONRenderer() if use_json
        else structlog.dev.ConsoleRenderer(colors=False, exception_formatter=structlog.dev.plain_traceback)
    )

    logging.root.handlers = [handler_for(logging.StreamHandler(sys.stdout), console_renderer)]
    if log_file:
        logging.root.addHandler(handler_for(logging.FileHandler(log_file), structlog.processors.JSONRenderer()))
    logging.root.setLevel(level)

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def loggable_path(path: str) -> str:
    """Request path with the signing token shortened."""
    if path.startswith("/sign/"):
        parts = path.split("/")
        parts[2] = mask_token(parts[2])
        return "/".join(parts)
    return path


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Access log and X-Request-ID propagation
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        token = request_id_var.set(request_id)
        logger = get_logger("api.access")
        path = loggable_path(request.url.path)
        start_time = datetime.now(timezone.utc)

        def elapsed_ms() -> float:
            return round((datetime.now(timezone.utc) - start_time).total_seconds() * 1000, 2)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method, path=path, duration_ms=elapsed_ms(), error=str(e), exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "request_id": request_id},
                headers={"X-Request-ID": request_id},
            )
        finally:
            request_id_var.reset(token)

        logger.info(
            "request_completed",
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=elapsed_ms(),
            client_host=request.client.host if request.client else None,
        )
        response.headers["X-Request-ID"] = request_id
        return response


def setup_app_logging(app: FastAPI, log_level: str = "INFO", use_json: bool = True,
                      log_file: Optional[str] = None, environment: str = "development") -> None:
    """Configure logging for the API process and install the access log middleware."""
    setup_logging(
        log_level=log_level,
        use_json=use_json,
        log_file=log_file,
        app_name="Lease Signing Service",
        environment=environment,
    )
    app.add_middleware(LoggingMiddleware)
