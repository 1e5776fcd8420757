import functools
import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from ipcr_portal.core.exceptions import AppException, status_for_code
from ipcr_portal.core.schemas import ApiResponse


class BaseService:
    """Common plumbing for domain services: session access and logging."""

    def __init__(self, db: Session):
        self.db = db
        self._logger = logging.getLogger(self.__class__.__module__)

    def log_info(self, message: str, **extra: Any) -> None:
        self._logger.info(message, extra=extra or None)

    def log_warning(self, message: str, **extra: Any) -> None:
        self._logger.warning(message, extra=extra or None)

    def log_error(self, message: str, **extra: Any) -> None:
        self._logger.error(message, extra=extra or None)


def service_action(func: Callable[..., Any]) -> Callable[..., ApiResponse]:
    """
    Action boundary for service methods.

    The wrapped method runs as one unit of work: on success the session is
    committed and the return value wrapped in ``ApiResponse.ok``; an
    ``AppException`` rolls the session back and becomes ``ApiResponse.fail``.
    Any other exception is rolled back and re-raised.

    A method may return an ``ApiResponse`` itself to attach metadata.
    """
    @functools.wraps(func)
    def wrapper(self: BaseService, *args, **kwargs) -> ApiResponse:
        try:
            result = func(self, *args, **kwargs)
            self.db.commit()
        except AppException as exc:
            self.db.rollback()
            self.log_warning(
                f"{func.__name__} rejected: {exc.message}",
                error_code=exc.error_code
            )
            return ApiResponse.fail(exc.message, code=exc.error_code, details=exc.details)
        except Exception:
            self.db.rollback()
            raise
        if isinstance(result, ApiResponse):
            return result
        return ApiResponse.ok(result)
    return wrapper


def status_code_for(result: ApiResponse, success_code: int = 200) -> int:
    if result.success:
        return success_code
    return status_for_code(result.error.code if result.error else "")

