"""Login flows and the cached credential record used for token refresh."""

from __future__ import annotations

import hashlib
from typing import Any, Callable

import httpx
import structlog
from pydantic import ValidationError

from crownstone_sse.errors import AuthError, LoginFailedError, NoCredentialsError
from crownstone_sse.models import (
    CredentialRecord,
    HubCredentials,
    LoginFailureKind,
    LoginResponse,
    UserCredentials,
)

logger = structlog.get_logger(__name__)

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}

LOGIN_TIMEOUT_SECONDS = 30.0


def sha1_hex(password: str) -> str:
    """Hash a password the way the cloud stores it (hex SHA-1)."""
    return hashlib.sha1(password.encode("utf-8")).hexdigest()


def normalize_base_url(url: str) -> str:
    """Ensure a base URL ends with exactly the one ``/`` it needs."""
    if not url.endswith("/"):
        url += "/"
    return url


def _classify(code: str | None) -> LoginFailureKind:
    if code == LoginFailureKind.EMAIL_NOT_VERIFIED.value:
        return LoginFailureKind.EMAIL_NOT_VERIFIED
    if code == LoginFailureKind.GENERIC.value:
        return LoginFailureKind.GENERIC
    return LoginFailureKind.UNKNOWN


class CredentialManager:
    """Owns the access token and remembers the last login method.

    The credential record is stored before the request goes out, so a failed
    login can still be retried later with the same parameters.

    Args:
        login_url: User login endpoint.
        hub_login_base_url: Hub login base; ``{hub_id}/login`` is appended.
        http_client: Shared httpx client. One is created lazily when omitted
            and closed by ``aclose``.
        hasher: Password hash function, hex SHA-1 by default.
    """

    def __init__(
        self,
        *,
        login_url: str,
        hub_login_base_url: str,
        http_client: httpx.AsyncClient | None = None,
        hasher: Callable[[str], str] = sha1_hex,
    ) -> None:
        self.login_url = login_url
        self.hub_login_base_url = normalize_base_url(hub_login_base_url)
        self.access_token: str | None = None
        self.credentials: CredentialRecord | None = None
        self._hasher = hasher
        self._client = http_client
        self._owns_client = http_client is None

    async def login(self, email: str, password: str) -> None:
        """Log in with a plain password; it is hashed before leaving the process."""
        await self.login_hashed(email, self._hasher(password))

    async def login_hashed(self, email: str, password_hash: str) -> None:
        """Log in with an already hashed password.

        Raises:
            AuthError: The endpoint answered 401.
            LoginFailedError: Any other failure, classified by ``error.code``.
        """
        self.credentials = UserCredentials(email=email, hashed_password=password_hash)
        try:
            token = await self._request_token(
                self.login_url, {"email": email, "password": password_hash}
            )
        except (AuthError, LoginFailedError) as exc:
            self._log_failure("user", exc, url=self.login_url)
            raise
        self.access_token = token
        logger.info("SSE user login successful.")

    async def hub_login(self, hub_id: str, hub_token: str) -> None:
        """Log in as a hub.

        Raises:
            AuthError: The endpoint answered 401.
            LoginFailedError: Any other failure, classified by ``error.code``.
        """
        self.credentials = HubCredentials(hub_id=hub_id, hub_token=hub_token)
        url = self.hub_login_url(hub_id, hub_token)
        try:
            token = await self._request_token(url, None)
        except (AuthError, LoginFailedError) as exc:
            self._log_failure("hub", exc, url=f"{self.hub_login_base_url}{hub_id}/login")
            raise
        self.access_token = token
        logger.info("SSE hub login successful.", hub_id=hub_id)

    def hub_login_url(self, hub_id: str, hub_token: str) -> str:
        return f"{self.hub_login_base_url}{hub_id}/login?token={hub_token}"

    async def retry_login(self) -> None:
        """Repeat the last login. Hub credentials win if both are somehow set.

        Raises:
            NoCredentialsError: No login was ever attempted.
        """
        record = self.credentials
        if isinstance(record, HubCredentials):
            await self.hub_login(record.hub_id, record.hub_token)
        elif isinstance(record, UserCredentials):
            await self.login_hashed(record.email, record.hashed_password)
        else:
            raise NoCredentialsError()

    def set_access_token(self, token: str | None) -> None:
        """Install a token directly. The credential record is left untouched."""
        self.access_token = token

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=LOGIN_TIMEOUT_SECONDS)
        return self._client

    async def _request_token(self, url: str, body: dict[str, Any] | None) -> str:
        """POST to a login endpoint and return the issued access token."""
        client = self._get_client()
        try:
            resp = await client.post(url, headers=DEFAULT_HEADERS, json=body)
        except httpx.HTTPError as exc:
            raise LoginFailedError(f"Login request failed: {exc}") from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise LoginFailedError(
                f"Login response was not JSON (status {resp.status_code})",
                status_code=resp.status_code,
            ) from exc

        try:
            parsed = LoginResponse.model_validate(data)
        except ValidationError as exc:
            raise LoginFailedError(
                "Unexpected login response shape",
                status_code=resp.status_code,
                details={"body": data},
            ) from exc

        error = parsed.error
        if error is not None:
            details = error.model_dump(by_alias=True, exclude_none=True)
            if error.status_code == 401:
                raise AuthError(
                    error.message or "Unauthorized",
                    error_code=error.code,
                    details=details,
                )
            raise LoginFailedError(
                error.message or "Login failed",
                kind=_classify(error.code),
                status_code=error.status_code or resp.status_code,
                details=details,
            )
        if resp.status_code == 401:
            raise AuthError("Unauthorized")
        if resp.status_code >= 400 or not parsed.id:
            raise LoginFailedError(
                f"Login did not return an access token (status {resp.status_code})",
                status_code=resp.status_code,
            )
        return parsed.id

    def _log_failure(self, flow: str, exc: AuthError | LoginFailedError, *, url: str) -> None:
        if isinstance(exc, AuthError):
            kind = _classify(exc.error_code)
        else:
            kind = exc.kind
        logger.warning(f"SSE {flow} login failed.", error=exc.message, kind=kind.value)
        if kind is LoginFailureKind.EMAIL_NOT_VERIFIED:
            logger.info("This email address has not been verified yet.")
        elif kind is LoginFailureKind.GENERIC:
            if flow == "hub":
                logger.info("Incorrect hub id/token.")
            else:
                logger.info("Incorrect email/password.")
        else:
            logger.error("Unknown error while trying to login.", url=url)
