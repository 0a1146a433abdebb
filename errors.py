"""
Application error taxonomy.

Every error carries the HTTP status it maps to; the boundary handlers in
``main.py`` turn them into ``{"message": ...}`` JSON bodies.
"""

from typing import Any, Optional


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[str] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail
        self.extra = extra


class ValidationError(AppError):
    status_code = 400


class AuthError(AppError):
    """Missing or bad credentials (401) or a failed role / profile gate (403)."""

    status_code = 401


class ConflictError(AppError):
    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class UpstreamError(AppError):
    """Media host or email delivery failure."""

    status_code = 500


class IncompleteProfileError(AppError):
    status_code = 403

    def __init__(self, email: str):
        super().__init__(
            "Please complete your profile first",
            needsProfileCompletion=True,
            email=email,
        )
        self.email = email
