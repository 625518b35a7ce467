# Закрытый набор видов ошибок. Сервисы бросают ServiceError,
# а main.py один раз переводит вид ошибки в HTTP-статус.
import enum
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    VALIDATION = 'validation'
    NOT_FOUND = 'not_found'
    CONFLICT = 'conflict'
    INTERNAL = 'internal'


STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class ServiceError(Exception):
    kind = ErrorKind.INTERNAL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    kind = ErrorKind.VALIDATION


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(ServiceError):
    kind = ErrorKind.CONFLICT


async def service_error_handler(request: Request, exc: ServiceError):
    if exc.kind is ErrorKind.INTERNAL:
        logger.error(f"Внутренняя ошибка на {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=STATUS_BY_KIND[exc.kind],
        content={'detail': exc.message, 'kind': exc.kind.value},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    # Внутренний админский инструмент: текст ошибки отдаем для диагностики
    logger.exception(f"Необработанная ошибка на {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={'detail': 'Internal server error', 'error': str(exc)},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
