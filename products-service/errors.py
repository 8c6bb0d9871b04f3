"""
Operational errors raised by handlers and dependencies.

Each one carries the HTTP status it maps to; the exception handlers in
``main`` turn them into ``{"status": "fail", "message": ...}`` bodies.
Anything that is not an ``AppError`` is reported as a generic 500.
"""


class AppError(Exception):
    error_type = "app_error"

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.is_operational = True


class UnauthorizedError(AppError):
    error_type = "unauthorized"

    def __init__(self, message: str = "Invalid or missing API key"):
        super().__init__(message, 401)


class ValidationError(AppError):
    error_type = "validation"

    def __init__(self, message: str = "Validation Error"):
        super().__init__(message, 400)


class NotFoundError(AppError):
    error_type = "not_found"

    def __init__(self, message: str = "Not Found"):
        super().__init__(message, 404)
