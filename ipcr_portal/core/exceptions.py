from typing import Any, Dict, Optional


class AppException(Exception):
    status_code: int = 400
    error_code: str = "BUSINESS_ERROR"
    default_message: str = "Request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class UnauthorizedError(AppException):
    status_code = 401
    error_code = "UNAUTHORIZED"
    default_message = "Unauthorized"


class ForbiddenError(AppException):
    """Wrong role or division outside the caller's scope."""
    status_code = 403
    error_code = "FORBIDDEN"
    default_message = "Forbidden"


class NotFoundError(AppException):
    status_code = 404
    error_code = "NOT_FOUND"
    default_message = "Not found"


class ValidationError(AppException):
    """Business-rule violation: quota, size, missing scores, no active cycle."""
    status_code = 422
    error_code = "VALIDATION_ERROR"
    default_message = "Validation failed"


class ConflictError(AppException):
    status_code = 409
    error_code = "CONFLICT"
    default_message = "Conflict"


class StorageError(AppException):
    status_code = 502
    error_code = "STORAGE_ERROR"
    default_message = "Storage operation failed"


ERROR_STATUS = {
    cls.error_code: cls.status_code
    for cls in (UnauthorizedError, ForbiddenError, NotFoundError, ValidationError, ConflictError, StorageError)
}


def status_for_code(error_code: str) -> int:
    return ERROR_STATUS.get(error_code, AppException.status_code)
