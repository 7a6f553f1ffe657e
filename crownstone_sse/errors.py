"""Exception types raised by the SSE client."""

from __future__ import annotations

from crownstone_sse.models import LoginFailureKind


class CrownstoneSSEError(Exception):
    """Base class for client errors, carrying a stable error code."""

    code: str = "SSE_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class AuthRequiredError(CrownstoneSSEError):
    """Raised by ``start`` when authentication is required and no token is set."""

    code = "ACCESS_TOKEN_REQUIRED"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "AccessToken is required. Use set_access_token() or login() to set one."
        )


class AuthError(CrownstoneSSEError):
    """A login endpoint answered with status 401."""

    code = "UNAUTHORIZED"

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 401,
        error_code: str | None = None,
        details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class LoginFailedError(CrownstoneSSEError):
    """A login attempt failed for a reason other than a plain 401."""

    code = "LOGIN_FAILED"

    def __init__(
        self,
        message: str,
        *,
        kind: LoginFailureKind = LoginFailureKind.UNKNOWN,
        status_code: int | None = None,
        details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.details = details or {}


class NoCredentialsError(CrownstoneSSEError):
    """``retry_login`` was called before any login attempt was recorded."""

    code = "NO_CREDENTIALS"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "No login credentials are cached; cannot retry login.")


class StreamError(CrownstoneSSEError):
    """Transport-level failure of the event stream.

    Passed to ``error`` listeners; never raised to the caller.
    """

    code = "STREAM_ERROR"

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TokenRefreshFailedError(CrownstoneSSEError):
    """Automatic token refresh gave up.

    Never raised; its message becomes the terminal ``COULD_NOT_REFRESH_TOKEN``
    event delivered through the callback.
    """

    code = "COULD_NOT_REFRESH_TOKEN"
