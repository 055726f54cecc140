"""
Error taxonomy for the CTF platform.

Every error carries the HTTP status the web layer answers with, so handlers
never translate exceptions by hand.
"""


class CTFError(Exception):
    """Base class for errors surfaced to API callers."""

    status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(CTFError):
    """Malformed input, e.g. an empty flag."""

    status = 400


class AlreadySolvedError(CTFError):
    """The user already has a correct submission for this challenge."""

    status = 400


class AuthenticationError(CTFError):
    status = 401


class PermissionDeniedError(CTFError):
    status = 403


class NotFoundError(CTFError):
    status = 404


class ConflictError(CTFError):
    """A unique field (username, email) is already taken."""

    status = 409


class StorageFault(CTFError):
    """The underlying store failed; the operation was rolled back."""

    status = 503
