from __future__ import annotations


class EngagementError(Exception):
    """Base for errors raised by the engagement services.

    Rendered by the API as ``{"detail": ...}`` with ``status_code``.
    """

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidInput(EngagementError):
    status_code = 400


class AuthError(EngagementError):
    status_code = 401


class ForbiddenError(EngagementError):
    status_code = 403


class NotFoundError(EngagementError):
    status_code = 404


class ConflictError(EngagementError):
    status_code = 409


class PersistenceError(EngagementError):
    # callers only ever see the generic message; the cause is logged server-side
    status_code = 500

    def __init__(self, detail: str = "Storage error"):
        super().__init__(detail)
