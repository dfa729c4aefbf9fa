"""
Custom exceptions for Vault Bridge.

Every exception carries the HTTP status and wire error code it maps to, so
the dispatcher can turn any of them into the standard error envelope.
"""


class BridgeError(Exception):
    """Base exception for all Vault Bridge errors."""

    status = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__.strip().splitlines()[0].rstrip(".")
        super().__init__(self.message)


class InvalidInputError(BridgeError):
    """Malformed or missing required input."""

    status = 400
    code = "INVALID_PATH"


class BodyReadError(BridgeError):
    """Failed to read the request body."""

    status = 400
    code = "INTERNAL_ERROR"


class AuthRequiredError(BridgeError):
    """Authorization required."""

    status = 401
    code = "AUTH_REQUIRED"


class AuthInvalidError(BridgeError):
    """Invalid authorization token."""

    status = 401
    code = "AUTH_INVALID"


class NotFoundError(BridgeError):
    """Resource not found."""

    status = 404
    code = "NOT_FOUND"


class AlreadyExistsError(BridgeError):
    """Resource already exists."""

    status = 409
    code = "ALREADY_EXISTS"


class BodyTooLargeError(BridgeError):
    """Request body too large.

    Raised while the body is still streaming in, so it is distinct from a
    body that arrived in full but could not be read.
    """

    status = 413
    code = "BODY_TOO_LARGE"

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Request body too large (max {limit} bytes)")


class RequestTimeoutError(BridgeError):
    """Request timeout."""

    status = 504
    code = "TIMEOUT"
