import time
import logging
import uuid
from typing import Callable, Iterable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from univo.core import config
from univo.core.logging_utils import error_tracker

logger = logging.getLogger(__name__)

QUIET_PATHS = ("/api/health", "/docs", "/openapi.json", "/redoc")

# Ответы с персональными данными не кэшируются
NO_STORE_PREFIXES = ("/api/auth", "/api/users/me", "/api/notifications")

# Категории путей для фильтрации логов
PATH_CATEGORIES = (
    ("/api/stripe-webhook", "payments"),
    ("/api/create-payment-intent", "payments"),
    ("/api/auth", "auth"),
    ("/api/club-applications", "applications"),
)


def get_client_ip(request: Request) -> str:
    """IP клиента с учетом proxy"""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


def path_category(path: str) -> Optional[str]:
    for prefix, category in PATH_CATEGORIES:
        if path.startswith(prefix):
            return category
    return None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Логирует каждый запрос с коротким X-Request-ID и длительностью,
    медленные запросы отмечаются предупреждением.

    Тело запроса, cookie и query string не логируются: в них бывают
    пароли, токены сессии и payload вебхуков.
    """

    def __init__(
        self,
        app: ASGIApp,
        quiet_paths: Iterable[str] = QUIET_PATHS,
        slow_request_threshold: float = 1.0,
    ):
        super().__init__(app)
        self.quiet_paths = tuple(quiet_paths)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id", "")[:8] or uuid.uuid4().hex[:8]
        request.state.request_id = request_id

        path = request.url.path
        if path in self.quiet_paths:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        context = {
            "request_id": request_id,
            "method": request.method,
            "path": path,
            "category": path_category(path),
        }
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {request.method} {path}",
                extra={
                    **context,
                    "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                    "error_type": type(e).__name__,
                },
            )
            raise

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        log_extra = {
            **context,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
            "client_ip": get_client_ip(request),
        }

        if duration_ms > self.slow_request_threshold * 1000:
            logger.warning(
                f"Slow request: {request.method} {path}",
                extra={**log_extra, "threshold_ms": self.slow_request_threshold * 1000},
            )
        else:
            logger.info(f"{request.method} {path} -> {response.status_code}", extra=log_extra)

        response.headers["X-Request-ID"] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Security headers для JSON API"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        path = request.url.path

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if not path.startswith(("/docs", "/redoc")):
            response.headers["Content-Security-Policy"] = (
                "default-src 'none'; frame-ancestors 'none'"
            )
        if path.startswith(NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"
        if config.SESSION_COOKIE_SECURE:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


class ErrorTrackingMiddleware(BaseHTTPMiddleware):
    """
    Считает ошибочные ответы в error_tracker.

    4xx группируются по коду ответа, 5xx и необработанные исключения
    дополнительно логируются.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            response = await call_next(request)
        except Exception as e:
            error_tracker.track_error(
                error_type=f"UNHANDLED_{type(e).__name__}",
                error_message=str(e),
                context={"method": request.method, "path": request.url.path},
            )
            raise

        if response.status_code >= 400:
            error_tracker.track_error(
                error_type=f"HTTP_{response.status_code}",
                error_message=f"HTTP {response.status_code} response",
                context={
                    "method": request.method,
                    "path": request.url.path,
                    "request_id": getattr(request.state, "request_id", None),
                },
            )
        return response


def setup_middleware(app, slow_request_threshold: float = 1.0):
    # Выполняются в обратном порядке добавления: логирование снаружи
    app.add_middleware(ErrorTrackingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RequestLoggingMiddleware, slow_request_threshold=slow_request_threshold
    )
    logger.debug("Middleware configured")
