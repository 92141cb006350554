# clinic_app_pkg/errors.py
"""
Exception taxonomy for the API.

Route handlers and services raise these; the application factory renders
them as ``{"error": message}`` with the matching status code.
"""


class APIError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.message}


class ValidationError(APIError):
    """Missing or invalid reference, or malformed field."""
    status_code = 400


class AuthenticationError(APIError):
    """Missing, unknown or expired session token."""
    status_code = 401


class AuthorizationError(APIError):
    """The caller's role lacks permission for the operation."""
    status_code = 403


class NotFoundError(APIError):
    status_code = 404
