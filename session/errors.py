"""Failures surfaced to callers of the session manager and its clients."""


class SessionError(Exception):
    """Base class; `code` mirrors the API's error code when there is one."""

    def __init__(self, message: str = "", code: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.code = code


class InvalidCredentials(SessionError):
    pass


class DuplicateEmail(SessionError):
    pass


class WeakPassword(SessionError):
    pass


class SessionExpired(SessionError):
    pass


class NetworkError(SessionError):
    """Transport failure or timeout; safe to retry only at the user's request."""
