"""Exception types raised by the lab API client and the widgets built on it.

Every error carries a single human-readable ``message`` so display layers can
show it as-is.
"""

from __future__ import annotations


class LabApiError(Exception):
    """Base class for failures talking to the lab or auth services."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class TransportError(LabApiError):
    """No response was received (connection refused, timeout, DNS...)."""


class ServerError(LabApiError):
    """The service answered with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(ServerError):
    """A 2xx response whose body cannot be used."""


class PreconditionError(LabApiError):
    """The operation cannot start in the current state."""


class AuthError(LabApiError):
    """Supabase rejected a sign-in, sign-out or session lookup."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
