"""
Application errors mapped to HTTP status codes.

Services raise these; the API layer renders them as {"error": message}.
"""


class AppError(Exception):
    """Base error with the HTTP status it maps to"""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    """Missing or malformed input"""

    status_code = 400
    default_message = "Invalid request"


class UnauthorizedError(AppError):
    """No (valid) session"""

    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(AppError):
    """Session present but role not allowed"""

    status_code = 403
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    """State conflict, e.g. duplicate active subscription"""

    status_code = 409
    default_message = "Conflict"


class InternalError(AppError):
    status_code = 500
    default_message = "Internal server error"
