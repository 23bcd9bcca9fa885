"""
Domain errors of the platform.

Every error carries an HTTP status, a stable machine-readable code and a
details dict; ``error_handlers`` renders them as
``{"error": code, "message", "details", "path"}``. Subclasses set
``status_code``/``error_code`` as class attributes and only build the
message and details.
"""

from typing import Optional, Dict, Any

Details = Optional[Dict[str, Any]]


class BaseAppException(Exception):
    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Details = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.details = details or {}


# === 401 / 403 ===
class UnauthorizedError(BaseAppException):
    """Нет сессии или сессия недействительна"""

    status_code = 401
    error_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required", details: Details = None):
        super().__init__(message, details=details)


class ForbiddenError(BaseAppException):
    status_code = 403
    error_code = "FORBIDDEN"

    def __init__(self, message: str = "Access denied", details: Details = None):
        super().__init__(message, details=details)


class PermissionDeniedError(ForbiddenError):
    """Роль пользователя не позволяет действие"""

    error_code = "PERMISSION_DENIED"

    def __init__(self, action: str, resource: str, reason: str = None):
        message = f"Permission denied: cannot {action} {resource}"
        if reason:
            message = f"{message} - {reason}"
        super().__init__(message, {"action": action, "resource": resource, "reason": reason})


# === 400 ===
class ValidationError(BaseAppException):
    """Запрос корректен по схеме, но нарушает правило домена"""

    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Details = None):
        super().__init__(message, details=details)


class BusinessLogicError(BaseAppException):
    status_code = 400
    error_code = "BUSINESS_LOGIC_ERROR"

    def __init__(self, message: str, details: Details = None):
        super().__init__(message, details=details)


class LimitExceededError(BusinessLogicError):
    """Вместимость клуба или события исчерпана"""

    def __init__(self, resource: str, limit: int, current: int):
        super().__init__(
            f"{resource} limit reached: {current}/{limit}",
            {"resource": resource, "limit": limit, "current": current},
        )


class WebhookSignatureError(BaseAppException):
    status_code = 400
    error_code = "INVALID_WEBHOOK_SIGNATURE"

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message)


# === 404 ===
class NotFoundError(BaseAppException):
    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str = None):
        details = {"resource": resource}
        message = f"{resource} not found"
        if identifier:
            details["identifier"] = identifier
            message = f"{resource} {identifier} not found"
        super().__init__(message, details=details)


# === 409 ===
class ConflictError(BaseAppException):
    """Операция конфликтует с текущим состоянием"""

    status_code = 409
    error_code = "CONFLICT"

    def __init__(self, message: str, details: Details = None, error_code: str = None):
        super().__init__(message, error_code=error_code, details=details)


class DuplicateError(ConflictError):
    error_code = "DUPLICATE_ERROR"

    def __init__(self, resource: str, field: str, value: str):
        super().__init__(
            f"{resource} with this {field} already exists",
            {"resource": resource, "field": field, "value": value},
        )


class AlreadyMemberError(ConflictError):
    error_code = "ALREADY_MEMBER"

    def __init__(self, club_id: int, user_id: int):
        super().__init__(
            "User is already an active member of this club",
            {"club_id": club_id, "user_id": user_id},
        )


class DuplicatePendingError(ConflictError):
    error_code = "DUPLICATE_PENDING_APPLICATION"

    def __init__(self, club_id: int, user_id: int):
        super().__init__(
            "A pending application for this club already exists",
            {"club_id": club_id, "user_id": user_id},
        )


class AlreadyReviewedError(ConflictError):
    error_code = "ALREADY_REVIEWED"

    def __init__(self, application_id: int, status: str):
        super().__init__(
            f"Application has already been {status}",
            {"application_id": application_id, "status": status},
        )


class InvalidStateError(ConflictError):
    error_code = "INVALID_STATE"


class RefundRequiredError(ConflictError):
    """Оплата прошла, но места или разовый взнос уже заняты другой записью"""

    error_code = "REFUND_REQUIRED"

    def __init__(self, kind: str, record_id: int, reason: str):
        super().__init__(
            f"Payment cannot be applied: {reason}",
            {"kind": kind, "record_id": record_id, "reason": reason},
        )


class LastAdminError(ConflictError):
    """Клуб не может остаться без активного администратора"""

    error_code = "LAST_ADMIN"

    def __init__(self, club_id: int):
        super().__init__(
            "A club must keep at least one active admin", {"club_id": club_id}
        )


# === Хранилище ===
class StoreError(BaseAppException):
    status_code = 500
    error_code = "DATABASE_ERROR"

    def __init__(
        self,
        message: str = "Database operation failed",
        details: Details = None,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message, status_code, error_code, details)


DatabaseError = StoreError


class DatabaseConnectionError(StoreError):
    status_code = 503
    error_code = "DATABASE_CONNECTION_ERROR"

    def __init__(self, message: str = "Database connection failed"):
        super().__init__(message)


class DatabaseTimeoutError(StoreError):
    status_code = 504
    error_code = "DATABASE_TIMEOUT"

    def __init__(self, operation: str, timeout: int):
        super().__init__(
            f"Database operation '{operation}' timed out after {timeout}s",
            {"operation": operation, "timeout": timeout},
        )


class DatabaseIntegrityError(StoreError):
    status_code = 409
    error_code = "DATABASE_INTEGRITY_ERROR"

    def __init__(self, constraint: str, details: Details = None):
        super().__init__(
            f"Database constraint violated: {constraint}",
            {"constraint": constraint, **(details or {})},
        )


# === Платёжный провайдер ===
class ProviderError(BaseAppException):
    status_code = 502
    error_code = "PROVIDER_ERROR"

    def __init__(self, provider: str, message: str = None, details: Details = None):
        super().__init__(
            message or f"Payment provider '{provider}' error",
            details={"provider": provider, **(details or {})},
        )


class ProviderUnavailableError(ProviderError):
    """Платежи не настроены (нет ключей Stripe)"""

    status_code = 503
    error_code = "PROVIDER_UNAVAILABLE"

    def __init__(self, provider: str = "stripe"):
        super().__init__(provider, "Payment processing is not configured")


# === Конфигурация ===
class ConfigurationError(BaseAppException):
    status_code = 500
    error_code = "CONFIGURATION_ERROR"

    def __init__(self, parameter: str, message: str = None):
        super().__init__(
            message or f"Configuration parameter '{parameter}' is invalid or missing",
            details={"parameter": parameter},
        )
