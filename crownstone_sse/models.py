"""Pydantic models for credentials, login responses and system events."""

from __future__ import annotations

from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field


class SystemSubType(str, Enum):
    """``subType`` values of protocol-level ``system`` events."""
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_ACCESS_TOKEN = "INVALID_ACCESS_TOKEN"
    COULD_NOT_REFRESH_TOKEN = "COULD_NOT_REFRESH_TOKEN"


class LoginFailureKind(str, Enum):
    """Classification of a failed login, derived from ``error.code``."""
    EMAIL_NOT_VERIFIED = "LOGIN_FAILED_EMAIL_NOT_VERIFIED"
    GENERIC = "LOGIN_FAILED"
    UNKNOWN = "UNKNOWN"


AUTH_EXPIRED_SUBTYPES = frozenset(
    {SystemSubType.TOKEN_EXPIRED.value, SystemSubType.INVALID_ACCESS_TOKEN.value}
)


class UserCredentials(BaseModel):
    """Email login, remembered with the already hashed password."""
    model_config = ConfigDict(frozen=True)

    email: str
    hashed_password: str = Field(repr=False)


class HubCredentials(BaseModel):
    """Hub login by hub id and hub token."""
    model_config = ConfigDict(frozen=True)

    hub_id: str
    hub_token: str = Field(repr=False)


CredentialRecord = Union[UserCredentials, HubCredentials]


class LoginErrorDetail(BaseModel):
    """The ``error`` object of a failed login response."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    status_code: int | None = Field(default=None, alias="statusCode")
    code: str | None = None
    message: str | None = None


class LoginResponse(BaseModel):
    """Body of a login response; ``id`` is the access token on success."""
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    error: LoginErrorDetail | None = None


class SystemEvent(BaseModel):
    """A ``system`` event synthesized by the client for the callback."""
    model_config = ConfigDict(populate_by_name=True)

    type: str = "system"
    sub_type: SystemSubType = Field(alias="subType")
    code: int
    message: str

    def to_event(self) -> dict[str, Any]:
        """Return the wire-shaped dict delivered to callbacks."""
        return self.model_dump(by_alias=True, mode="json")


def is_auth_expired_event(message: Any) -> bool:
    """Whether a decoded payload is the server's token-expiry signal."""
    if not isinstance(message, dict):
        return False
    return (
        message.get("type") == "system"
        and message.get("code") == 401
        and message.get("subType") in AUTH_EXPIRED_SUBTYPES
    )
