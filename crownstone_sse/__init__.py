"""Persistent, self-recovering Server-Sent Events client for the Crownstone cloud."""

from crownstone_sse.errors import (
    AuthError,
    AuthRequiredError,
    CrownstoneSSEError,
    LoginFailedError,
    NoCredentialsError,
    StreamError,
    TokenRefreshFailedError,
)
from crownstone_sse.models import (
    HubCredentials,
    LoginFailureKind,
    SystemEvent,
    SystemSubType,
    UserCredentials,
)
from crownstone_sse.session import CrownstoneSSE
from crownstone_sse.version import __version__

__all__ = [
    "AuthError",
    "AuthRequiredError",
    "CrownstoneSSE",
    "CrownstoneSSEError",
    "HubCredentials",
    "LoginFailedError",
    "LoginFailureKind",
    "NoCredentialsError",
    "StreamError",
    "SystemEvent",
    "SystemSubType",
    "TokenRefreshFailedError",
    "UserCredentials",
    "__version__",
]
