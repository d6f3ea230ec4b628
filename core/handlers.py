import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from core.errors import ErrorCode, ErrorMessage
from core.exceptions import AppException, UpstreamError, UpstreamRateLimited

logger = logging.getLogger(__name__)


def error_response(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {
                "code": code,
                "message": message,
                "details": details or {}
            }
        }
    )


def _describe(error: dict) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    message = error.get("msg", ErrorMessage.INVALID_INPUT)
    return f"{location}: {message}" if location else message


async def app_exception_handler(request: Request, exc: AppException):
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = _describe(errors[0]) if errors else ErrorMessage.INVALID_INPUT
    details = {
        "errors": [
            {"loc": [str(part) for part in e.get("loc", ())], "msg": e.get("msg"), "type": e.get("type")}
            for e in errors
        ]
    }
    return error_response(status.HTTP_400_BAD_REQUEST, ErrorCode.INVALID_INPUT, message, details)


async def upstream_exception_handler(request: Request, exc: UpstreamError):
    logger.error("Price feed failure on %s: %s", request.url.path, exc)
    if isinstance(exc, UpstreamRateLimited):
        details = {"retryAfter": exc.retry_after} if exc.retry_after is not None else None
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            ErrorCode.UPSTREAM_RATE_LIMITED,
            ErrorMessage.UPSTREAM_RATE_LIMITED,
            details,
        )
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorCode.UPSTREAM_ERROR,
        ErrorMessage.UPSTREAM_ERROR,
        {"reason": str(exc)},
    )


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    return error_response(
        status.HTTP_429_TOO_MANY_REQUESTS,
        ErrorCode.RATE_LIMITED,
        ErrorMessage.RATE_LIMITED,
        {"limit": str(exc.detail)},
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorCode.INTERNAL_ERROR,
        ErrorMessage.INTERNAL_ERROR,
    )


def register_exception_handlers(app):
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(UpstreamError, upstream_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
