class AppException(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict | None = None
    ):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}


class UpstreamError(Exception):
    """The price feed failed or returned something unusable."""


class UpstreamRateLimited(UpstreamError):
    def __init__(self, message: str = "Price feed rate limit reached", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class InsufficientBalanceError(Exception):
    def __init__(self, user_id: int, token_id: int, available, requested):
        super().__init__(
            f"Balance of token {token_id} for user {user_id} is {available}, needs {requested}"
        )
        self.user_id = user_id
        self.token_id = token_id
        self.available = available
        self.requested = requested


class InvalidTransitionError(Exception):
    def __init__(self, transaction_id: int, current: str, requested: str):
        super().__init__(f"Transaction {transaction_id} cannot move from {current} to {requested}")
        self.transaction_id = transaction_id
        self.current = current
        self.requested = requested
