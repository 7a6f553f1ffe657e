"""Tests for CredentialManager login flows."""

from __future__ import annotations

import hashlib

import httpx
import pytest
from structlog.testing import capture_logs

from crownstone_sse.credentials import CredentialManager, normalize_base_url, sha1_hex
from crownstone_sse.errors import AuthError, LoginFailedError, NoCredentialsError
from crownstone_sse.models import HubCredentials, LoginFailureKind, UserCredentials


@pytest.fixture
def manager(http_client: httpx.AsyncClient) -> CredentialManager:
    return CredentialManager(
        login_url="https://cloud.test/api/users/login",
        hub_login_base_url="https://cloud.test/api/Hubs",
        http_client=http_client,
    )


class TestHelpers:
    def test_sha1_hex_matches_hashlib(self) -> None:
        assert sha1_hex("pw") == hashlib.sha1(b"pw").hexdigest()

    def test_normalize_adds_single_slash(self) -> None:
        assert normalize_base_url("https://x/api/Hubs") == "https://x/api/Hubs/"
        assert normalize_base_url("https://x/api/Hubs/") == "https://x/api/Hubs/"


class TestUserLogin:
    """Email/password login."""

    @pytest.mark.anyio
    async def test_login_posts_hashed_password(self, manager, login_endpoint) -> None:
        await manager.login("a@b.com", "pw")

        request = login_endpoint.requests[-1]
        assert request.method == "POST"
        assert str(request.url) == "https://cloud.test/api/users/login"
        assert request.headers["accept"] == "application/json"
        assert request.headers["content-type"] == "application/json"
        assert login_endpoint.body() == {
            "email": "a@b.com",
            "password": hashlib.sha1(b"pw").hexdigest(),
        }
        assert manager.access_token == "token-1"

    @pytest.mark.anyio
    async def test_login_401_raises_and_leaves_token_unset(self, manager, login_endpoint) -> None:
        login_endpoint.queue(401, json={"error": {"statusCode": 401}})

        with pytest.raises(AuthError) as exc_info:
            await manager.login("a@b.com", "pw")

        assert exc_info.value.status_code == 401
        assert manager.access_token is None

    @pytest.mark.anyio
    async def test_401_in_body_wins_over_http_status(self, manager, login_endpoint) -> None:
        """The body's statusCode decides, even on a 200 answer."""
        login_endpoint.queue(200, json={"error": {"statusCode": 401, "code": "LOGIN_FAILED"}})

        with pytest.raises(AuthError) as exc_info:
            await manager.login("a@b.com", "pw")

        assert exc_info.value.error_code == "LOGIN_FAILED"

    @pytest.mark.anyio
    async def test_email_not_verified(self, manager, login_endpoint) -> None:
        login_endpoint.queue(
            400,
            json={"error": {"statusCode": 400, "code": "LOGIN_FAILED_EMAIL_NOT_VERIFIED"}},
        )

        with pytest.raises(LoginFailedError) as exc_info:
            await manager.login("a@b.com", "pw")

        assert exc_info.value.kind is LoginFailureKind.EMAIL_NOT_VERIFIED
        assert exc_info.value.status_code == 400

    @pytest.mark.anyio
    async def test_generic_login_failure(self, manager, login_endpoint) -> None:
        login_endpoint.queue(400, json={"error": {"statusCode": 400, "code": "LOGIN_FAILED"}})

        with pytest.raises(LoginFailedError) as exc_info:
            await manager.login("a@b.com", "pw")

        assert exc_info.value.kind is LoginFailureKind.GENERIC

    @pytest.mark.anyio
    async def test_unknown_error_code(self, manager, login_endpoint) -> None:
        login_endpoint.queue(500, json={"error": {"statusCode": 500, "code": "BOOM"}})

        with pytest.raises(LoginFailedError) as exc_info:
            await manager.login("a@b.com", "pw")

        assert exc_info.value.kind is LoginFailureKind.UNKNOWN

    @pytest.mark.anyio
    async def test_non_json_body(self, manager, login_endpoint) -> None:
        login_endpoint.queue(502, text="<html>bad gateway</html>")

        with pytest.raises(LoginFailedError) as exc_info:
            await manager.login("a@b.com", "pw")

        assert exc_info.value.kind is LoginFailureKind.UNKNOWN
        assert exc_info.value.status_code == 502

    @pytest.mark.anyio
    async def test_missing_id_is_a_failure(self, manager, login_endpoint) -> None:
        login_endpoint.queue(200, json={"ttl": 1209600})

        with pytest.raises(LoginFailedError):
            await manager.login("a@b.com", "pw")
        assert manager.access_token is None

    @pytest.mark.anyio
    async def test_transport_error_is_unknown_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            manager = CredentialManager(
                login_url="https://cloud.test/api/users/login",
                hub_login_base_url="https://cloud.test/api/Hubs/",
                http_client=client,
            )
            with pytest.raises(LoginFailedError) as exc_info:
                await manager.login("a@b.com", "pw")

        assert exc_info.value.kind is LoginFailureKind.UNKNOWN
        assert isinstance(manager.credentials, UserCredentials)

    @pytest.mark.anyio
    async def test_credentials_recorded_even_when_login_fails(self, manager, login_endpoint) -> None:
        login_endpoint.queue(401, json={"error": {"statusCode": 401}})

        with pytest.raises(AuthError):
            await manager.login_hashed("a@b.com", "abc123")

        assert manager.credentials == UserCredentials(email="a@b.com", hashed_password="abc123")


class TestHubLogin:
    """Hub id/token login."""

    @pytest.mark.anyio
    async def test_hub_login_url_normalized(self, manager, login_endpoint) -> None:
        await manager.hub_login("hub1", "tok1")

        request = login_endpoint.requests[-1]
        assert str(request.url) == "https://cloud.test/api/Hubs/hub1/login?token=tok1"
        assert request.method == "POST"
        assert request.content == b""
        assert manager.access_token == "token-1"
        assert manager.credentials == HubCredentials(hub_id="hub1", hub_token="tok1")

    @pytest.mark.anyio
    async def test_hub_login_401(self, manager, login_endpoint) -> None:
        login_endpoint.queue(401, json={"error": {"statusCode": 401, "code": "LOGIN_FAILED"}})

        with pytest.raises(AuthError):
            await manager.hub_login("hub1", "tok1")
        assert manager.access_token is None


class TestRetryAndToken:
    @pytest.mark.anyio
    async def test_retry_without_credentials(self, manager) -> None:
        with pytest.raises(NoCredentialsError):
            await manager.retry_login()

    @pytest.mark.anyio
    async def test_retry_replays_user_login(self, manager, login_endpoint) -> None:
        await manager.login_hashed("a@b.com", "abc123")
        login_endpoint.default = (200, {"json": {"id": "token-2"}})

        await manager.retry_login()

        assert len(login_endpoint.requests) == 2
        assert login_endpoint.body() == {"email": "a@b.com", "password": "abc123"}
        assert manager.access_token == "token-2"

    @pytest.mark.anyio
    async def test_retry_replays_hub_login(self, manager, login_endpoint) -> None:
        await manager.hub_login("hub1", "tok1")

        await manager.retry_login()

        assert [str(r.url) for r in login_endpoint.requests] == [
            "https://cloud.test/api/Hubs/hub1/login?token=tok1",
            "https://cloud.test/api/Hubs/hub1/login?token=tok1",
        ]

    @pytest.mark.anyio
    async def test_set_access_token_keeps_credentials(self, manager) -> None:
        manager.set_access_token("manual")

        assert manager.access_token == "manual"
        assert manager.credentials is None

    @pytest.mark.anyio
    async def test_aclose_leaves_injected_client_open(self, manager, http_client) -> None:
        await manager.aclose()
        assert not http_client.is_closed


class TestLogging:
    @pytest.mark.anyio
    async def test_login_success_log_omits_account_details(self, manager) -> None:
        with capture_logs() as logs:
            await manager.login("a@b.com", "pw")

        success = [entry for entry in logs if entry["event"] == "SSE user login successful."]
        assert len(success) == 1
        assert "a@b.com" not in repr(logs)
        assert "token-1" not in repr(logs)
