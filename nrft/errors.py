from __future__ import annotations


class NrftError(Exception):
    """Base error carrying the HTTP status the API layer reports."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(NrftError):
    status_code = 400


class UnauthorizedError(NrftError):
    status_code = 401


class NotFoundError(NrftError):
    status_code = 404


class ConflictError(NrftError):
    """Session is no longer PENDING."""

    status_code = 409


class GoneError(NrftError):
    """Session expired before the answers arrived."""

    status_code = 410


class ServiceUnavailableError(NrftError):
    status_code = 503
