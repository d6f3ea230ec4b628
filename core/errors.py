from fastapi import status
from core.exceptions import AppException

class ErrorCode:
    INVALID_INPUT = "INVALID_INPUT"
    WALLET_REQUIRED = "WALLET_REQUIRED"

    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    PRICE_UNAVAILABLE = "PRICE_UNAVAILABLE"

    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    SETTLEMENT_UNAVAILABLE = "SETTLEMENT_UNAVAILABLE"

    UPSTREAM_RATE_LIMITED = "UPSTREAM_RATE_LIMITED"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"

    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorMessage:
    INVALID_INPUT = "Invalid request"
    WALLET_REQUIRED = "Wallet address is required"

    TOKEN_NOT_FOUND = "Token not found"
    USER_NOT_FOUND = "User not found"
    PRICE_UNAVAILABLE = "Token prices not available"

    INSUFFICIENT_BALANCE = "Insufficient balance"
    SETTLEMENT_UNAVAILABLE = "Settlement is not running, try again later"

    UPSTREAM_RATE_LIMITED = "Price feed rate limit reached, try again later"
    UPSTREAM_ERROR = "Price feed request failed"

    RATE_LIMITED = "Too many requests"
    INTERNAL_ERROR = "Internal server error"



def bad_request(code: str, message: str, details: dict | None = None):
    return AppException(
        status_code=status.HTTP_400_BAD_REQUEST,
        code=code,
        message=message,
        details=details
    )


def not_found(code: str, message: str, details: dict | None = None):
    return AppException(
        status_code=status.HTTP_404_NOT_FOUND,
        code=code,
        message=message,
        details=details
    )


def service_unavailable(code: str, message: str, details: dict | None = None):
    return AppException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        code=code,
        message=message,
        details=details
    )


def insufficient_balance(symbol: str, available, requested):
    return bad_request(
        ErrorCode.INSUFFICIENT_BALANCE,
        ErrorMessage.INSUFFICIENT_BALANCE,
        details={
            "token": symbol,
            "available": str(available),
            "requested": str(requested),
        },
    )
