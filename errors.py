"""
Error types raised by the repository and messaging layers.

Each error carries the HTTP status the API answers with; main.py turns them
into ``{"detail": ...}`` responses.
"""


class AidLinkError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or "")


class MissingFieldsError(AidLinkError):
    """Please fill out the required fields."""

    status_code = 400


class InvalidFieldError(AidLinkError):
    """Invalid field value."""

    status_code = 400


class PermissionDeniedError(AidLinkError):
    """Not allowed."""

    status_code = 403


class NotFoundError(AidLinkError):
    """Not found."""

    status_code = 404


class ConflictError(AidLinkError):
    """Conflicting update."""

    status_code = 409


class StoreError(AidLinkError):
    """Document store unavailable."""

    status_code = 503
