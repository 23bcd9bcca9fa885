"""
Обработчики ошибок FastAPI.

Каждая ошибка отдаётся одним телом:
``{"error": CODE, "message": ..., "details": {...}, "path": ...}``.
"""

import json
import logging
import re
import traceback
from typing import Optional, Union

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    TimeoutError,
    DisconnectionError,
)
from asyncpg.exceptions import (
    PostgresError,
    ConnectionFailureError,
    ConnectionDoesNotExistError,
    TooManyConnectionsError,
)

from univo.core.config import DEBUG
from univo.core.logging_utils import redact
from univo.core.exceptions import (
    BaseAppException,
    ConflictError,
    DatabaseError,
    DatabaseConnectionError,
    DatabaseTimeoutError,
    DatabaseIntegrityError,
)

logger = logging.getLogger(__name__)

# Нарушения уникальности, которые CRUD обычно ловит сам; здесь - страховка
CONSTRAINT_ERRORS = {
    "uq_club_members_club_user": ("ALREADY_MEMBER", "User is already a member of this club"),
    "uq_club_applications_pending": (
        "DUPLICATE_PENDING_APPLICATION",
        "User already has a pending application to this club",
    ),
    "users_username_key": ("DUPLICATE_ERROR", "Username is already taken"),
    "users_email_key": ("DUPLICATE_ERROR", "Email is already registered"),
    "clubs_name_key": ("DUPLICATE_ERROR", "Club name is already taken"),
}

HTTP_ERROR_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    429: "RATE_LIMIT_EXCEEDED",
}


def _error_body(request: Request, error: str, message: str, details: Optional[dict]) -> dict:
    return {
        "error": error,
        "message": message,
        "details": details or {},
        "path": request.url.path,
    }


def _request_context(request: Request) -> dict:
    return {
        "path": request.url.path,
        "method": request.method,
        "request_id": getattr(request.state, "request_id", None),
    }


async def app_exception_handler(
    request: Request, exc: BaseAppException
) -> JSONResponse:
    """Доменные ошибки: 4xx как предупреждение, 5xx как ошибка"""
    log_level = logging.WARNING if exc.status_code < 500 else logging.ERROR
    logger.log(
        log_level,
        f"{exc.error_code}: {exc.message}",
        extra={
            "error_code": exc.error_code,
            "status_code": exc.status_code,
            "details": exc.details,
            **_request_context(request),
        },
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.error_code, exc.message, exc.details),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    error_code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    logger.warning(
        f"HTTP {exc.status_code}: {exc.detail}",
        extra={"status_code": exc.status_code, **_request_context(request)},
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, error_code, str(exc.detail), {}),
        headers=getattr(exc, "headers", None),
    )


def _safe_input(value):
    if value is None:
        return None
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


def _format_validation_error(error: dict) -> dict:
    loc = error.get("loc") or ()
    field_name = str(loc[-1]).lower() if loc else ""
    return {
        "field": " -> ".join(str(part) for part in loc),
        "message": error.get("msg", "Validation error"),
        "type": error.get("type", "value_error"),
        # Пароль не возвращается даже в ошибке валидации; для missing
        # input - это всё тело запроса
        "input": None if "password" in field_name else _safe_input(redact(error.get("input"))),
    }


async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, PydanticValidationError]
) -> JSONResponse:
    fields = [_format_validation_error(error) for error in exc.errors()]

    logger.warning(
        f"Validation error: {len(fields)} field(s)",
        extra={
            "fields": [field["field"] for field in fields],
            **_request_context(request),
        },
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(
            request,
            "VALIDATION_ERROR",
            f"Validation failed for {len(fields)} field(s)",
            {"fields": fields},
        ),
    )


def _constraint_name(exc: IntegrityError) -> str:
    name = getattr(exc.orig, "constraint_name", None)
    if name:
        return name
    # SQLite не сообщает имя ограничения, только колонки
    match = re.search(r'constraint "([^"]+)"', str(exc.orig))
    return match.group(1) if match else "unknown"


def translate_store_error(exc: SQLAlchemyError) -> BaseAppException:
    """Ошибка SQLAlchemy -> доменная ошибка хранилища"""
    if isinstance(exc, IntegrityError):
        constraint = _constraint_name(exc)
        if constraint in CONSTRAINT_ERRORS:
            code, message = CONSTRAINT_ERRORS[constraint]
            return ConflictError(message, {"constraint": constraint}, code)
        details = {"original_error": str(exc.orig)} if DEBUG else None
        return DatabaseIntegrityError(constraint, details)

    if isinstance(exc, (OperationalError, DisconnectionError)):
        return DatabaseConnectionError("Database connection lost")

    if isinstance(exc, TimeoutError):
        return DatabaseTimeoutError("database_operation", 30)

    return DatabaseError("Database operation failed")


async def database_exception_handler(
    request: Request, exc: SQLAlchemyError
) -> JSONResponse:
    app_exc = translate_store_error(exc)
    logger.error(
        f"Database exception: {type(exc).__name__}",
        extra={
            "exception_type": type(exc).__name__,
            "mapped_to": app_exc.error_code,
            **_request_context(request),
        },
    )
    return await app_exception_handler(request, app_exc)


async def postgres_exception_handler(
    request: Request, exc: PostgresError
) -> JSONResponse:
    if isinstance(exc, (ConnectionFailureError, ConnectionDoesNotExistError)):
        app_exc = DatabaseConnectionError("PostgreSQL connection failed")
    elif isinstance(exc, TooManyConnectionsError):
        app_exc = DatabaseConnectionError("Too many database connections")
    else:
        app_exc = DatabaseError(
            "PostgreSQL error", details={"postgres_code": getattr(exc, "sqlstate", None)}
        )

    logger.error(
        f"PostgreSQL exception: {type(exc).__name__}",
        extra={
            "exception_type": type(exc).__name__,
            "postgres_code": getattr(exc, "sqlstate", None),
            **_request_context(request),
        },
    )
    return await app_exception_handler(request, app_exc)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception: {type(exc).__name__} - {str(exc)}",
        extra={
            "exception_type": type(exc).__name__,
            "traceback": traceback.format_exc(),
            **_request_context(request),
        },
    )

    # Детали только в development
    details = (
        {"exception_type": type(exc).__name__, "traceback": traceback.format_exc()}
        if DEBUG
        else {}
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            request, "INTERNAL_SERVER_ERROR", "An unexpected error occurred", details
        ),
    )


def setup_exception_handlers(app):
    app.add_exception_handler(BaseAppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(PostgresError, postgres_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
