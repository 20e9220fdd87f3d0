"""Tests for AuthFlowCoordinator.

The callback listener is exercised with a real aiohttp client on a free
local port; the OAuth flow object and email lookup are mocked.
"""

import asyncio
import socket
import threading
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest
from google.oauth2.credentials import Credentials

from mailbridge.auth.flow import AuthFlowCoordinator, AuthState
from mailbridge.errors import (
    AuthFlowAlreadyRunning,
    AuthFlowFailed,
    AuthTimeout,
    CallbackPortInUse,
    InvalidAccountId,
)

AUTH_URL = "https://accounts.google.com/o/oauth2/auth?client_id=client-id"
OAUTH_STATE = "state-123"


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def port():
    return free_port()


@pytest.fixture
def registry(client_credentials):
    registry = MagicMock()
    registry.client_credentials = client_credentials
    registry.save_tokens = AsyncMock()
    return registry


@pytest.fixture
def flow():
    """Patch google_auth_oauthlib's Flow with a mock."""
    flow = MagicMock()
    flow.authorization_url.return_value = (AUTH_URL, OAUTH_STATE)
    flow.credentials = Credentials(token="new-access", refresh_token="new-refresh")
    with patch("mailbridge.auth.flow.Flow") as mock_flow_class:
        mock_flow_class.from_client_config.return_value = flow
        yield flow


@pytest.fixture(autouse=True)
def email_lookup():
    with patch(
        "mailbridge.auth.flow.lookup_email", new=AsyncMock(return_value="me@example.com")
    ) as lookup:
        yield lookup


@pytest.fixture
def coordinator(registry, port):
    return AuthFlowCoordinator(registry, port=port, timeout=5)


async def call_back(port: int, query: str = "", path: str = "/oauth2callback"):
    """Hit the listener like the browser would after consent."""
    async with aiohttp.ClientSession() as session:
        async with session.get(f"http://127.0.0.1:{port}{path}?{query}") as response:
            return response.status, await response.text()


class TestStart:
    """Tests for AuthFlowCoordinator.start."""

    @pytest.mark.asyncio
    async def test_returns_urls(self, coordinator, flow, port):
        result = await coordinator.start("work")
        try:
            assert result.auth_url == AUTH_URL
            assert result.callback_url == f"http://localhost:{port}/oauth2callback"
            assert coordinator.state is AuthState.LISTENING
            assert coordinator.is_running()
            flow.authorization_url.assert_called_once_with(
                access_type="offline", prompt="consent"
            )
        finally:
            await coordinator.stop()

    @pytest.mark.asyncio
    async def test_requests_gmail_scopes(self, coordinator, flow, port):
        with patch("mailbridge.auth.flow.Flow") as mock_flow_class:
            mock_flow_class.from_client_config.return_value = flow
            await coordinator.start("work")
        try:
            _, kwargs = mock_flow_class.from_client_config.call_args
            assert "https://www.googleapis.com/auth/gmail.modify" in kwargs["scopes"]
            assert "https://mail.google.com/" in kwargs["scopes"]
            assert kwargs["redirect_uri"] == f"http://localhost:{port}/oauth2callback"
        finally:
            await coordinator.stop()

    @pytest.mark.asyncio
    async def test_invalid_account_rejected_before_binding(self, coordinator, flow):
        with pytest.raises(InvalidAccountId):
            await coordinator.start("Work!")

        assert coordinator.state is AuthState.IDLE
        flow.authorization_url.assert_not_called()

    @pytest.mark.asyncio
    async def test_second_start_rejected(self, coordinator, flow):
        """A running session is left untouched by a second start."""
        await coordinator.start("work")
        try:
            with pytest.raises(AuthFlowAlreadyRunning):
                await coordinator.start("home")

            assert coordinator.account_id == "work"
            assert coordinator.state is AuthState.LISTENING
        finally:
            await coordinator.stop()

    @pytest.mark.asyncio
    async def test_port_in_use(self, coordinator, flow, port):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", port))
            blocker.listen()

            with pytest.raises(CallbackPortInUse):
                await coordinator.start("work")

        assert not coordinator.is_running()


class TestCallback:
    """Tests for the callback handler."""

    @pytest.mark.asyncio
    async def test_success(self, coordinator, flow, registry, port):
        await coordinator.start("work")

        status, body = await call_back(port, f"code=auth-code&state={OAUTH_STATE}")
        account_id = await coordinator.wait()

        assert status == 200
        assert "Authentication Successful" in body
        assert "work" in body
        assert "me@example.com" in body
        assert account_id == "work"
        assert coordinator.state is AuthState.COMPLETE
        assert coordinator.email == "me@example.com"
        flow.fetch_token.assert_called_once_with(code="auth-code")

        registry.save_tokens.assert_awaited_once()
        args, kwargs = registry.save_tokens.call_args
        assert args[0] == "work"
        assert args[1]["access_token"] == "new-access"
        assert args[1]["refresh_token"] == "new-refresh"
        assert kwargs["email"] == "me@example.com"

    @pytest.mark.asyncio
    async def test_listener_released_after_completion(self, coordinator, flow, port):
        await coordinator.start("work")
        await call_back(port, f"code=auth-code&state={OAUTH_STATE}")
        await coordinator.wait()

        # The port is free again, so a new session can start
        assert not coordinator.is_running()
        await coordinator.start("home")
        await coordinator.stop()

    @pytest.mark.asyncio
    async def test_error_parameter(self, coordinator, flow, registry, port):
        await coordinator.start("work")

        status, body = await call_back(port, "error=access_denied")

        assert status == 400
        assert "access_denied" in body
        with pytest.raises(AuthFlowFailed, match="access_denied"):
            await coordinator.wait()
        assert coordinator.state is AuthState.FAILED
        registry.save_tokens.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_code(self, coordinator, flow, port):
        await coordinator.start("work")

        status, body = await call_back(port, f"state={OAUTH_STATE}")

        assert status == 400
        assert "No authorization code received" in body
        with pytest.raises(AuthFlowFailed):
            await coordinator.wait()

    @pytest.mark.asyncio
    async def test_state_mismatch(self, coordinator, flow, registry, port):
        await coordinator.start("work")

        status, _ = await call_back(port, "code=auth-code&state=forged")

        assert status == 400
        with pytest.raises(AuthFlowFailed, match="State"):
            await coordinator.wait()
        flow.fetch_token.assert_not_called()

    @pytest.mark.asyncio
    async def test_exchange_failure(self, coordinator, flow, registry, port):
        flow.fetch_token.side_effect = ValueError("invalid code")
        await coordinator.start("work")

        status, body = await call_back(port, f"code=auth-code&state={OAUTH_STATE}")

        assert status == 500
        assert "invalid code" in body
        with pytest.raises(AuthFlowFailed):
            await coordinator.wait()
        registry.save_tokens.assert_not_called()

    @pytest.mark.asyncio
    async def test_persistence_failure(self, coordinator, flow, registry, port):
        registry.save_tokens.side_effect = OSError("read-only file system")
        await coordinator.start("work")

        status, _ = await call_back(port, f"code=auth-code&state={OAUTH_STATE}")

        assert status == 500
        with pytest.raises(AuthFlowFailed, match="read-only"):
            await coordinator.wait()

    @pytest.mark.asyncio
    async def test_other_paths_not_found(self, coordinator, flow, port):
        await coordinator.start("work")
        try:
            status, _ = await call_back(port, path="/favicon.ico")

            assert status == 404
            assert coordinator.state is AuthState.LISTENING
        finally:
            await coordinator.stop()


class TestTimeoutAndStop:
    """Tests for session timeout and cancellation."""

    @pytest.mark.asyncio
    async def test_timeout(self, registry, flow, port):
        coordinator = AuthFlowCoordinator(registry, port=port, timeout=0.05)
        await coordinator.start("work")

        with pytest.raises(AuthTimeout):
            await coordinator.wait()

        assert coordinator.state is AuthState.TIMED_OUT
        assert not coordinator.is_running()

    @pytest.mark.asyncio
    async def test_stop(self, coordinator, flow):
        await coordinator.start("work")

        await coordinator.stop()

        assert coordinator.state is AuthState.FAILED
        assert not coordinator.is_running()

    @pytest.mark.asyncio
    async def test_stop_during_token_exchange_discards_tokens(
        self, coordinator, flow, registry, port
    ):
        release = threading.Event()
        flow.fetch_token.side_effect = lambda **kwargs: release.wait(5)
        await coordinator.start("work")

        calling = asyncio.ensure_future(
            call_back(port, f"code=auth-code&state={OAUTH_STATE}")
        )
        while coordinator.state is not AuthState.EXCHANGING:
            await asyncio.sleep(0.01)

        stopping = asyncio.ensure_future(coordinator.stop())
        while coordinator.state is not AuthState.FAILED:
            await asyncio.sleep(0.01)
        release.set()
        status, body = await calling
        await stopping

        assert status == 400
        assert "cancelled" in body
        assert coordinator.state is AuthState.FAILED
        registry.save_tokens.assert_not_called()

    @pytest.mark.asyncio
    async def test_stop_during_email_lookup_discards_tokens(
        self, coordinator, flow, registry, port, email_lookup
    ):
        stopping = []

        async def lookup(account):
            stopping.append(asyncio.ensure_future(coordinator.stop()))
            await asyncio.sleep(0)
            return "me@example.com"

        email_lookup.side_effect = lookup
        await coordinator.start("work")

        status, body = await call_back(port, f"code=auth-code&state={OAUTH_STATE}")
        await stopping[0]

        assert status == 400
        assert "cancelled" in body
        registry.save_tokens.assert_not_called()

    @pytest.mark.asyncio
    async def test_stop_when_idle(self, coordinator):
        await coordinator.stop()

        assert coordinator.state is AuthState.IDLE

    @pytest.mark.asyncio
    async def test_wait_without_session(self, coordinator):
        with pytest.raises(AuthFlowFailed):
            await coordinator.wait()


class TestAuthenticate:
    """Tests for the authenticate convenience method."""

    @pytest.mark.asyncio
    async def test_prints_url_and_waits(self, coordinator, flow, port):
        messages = []

        async def browser():
            # Wait for the listener, then approve
            while coordinator.state is not AuthState.LISTENING:
                await asyncio.sleep(0.01)
            await call_back(port, f"code=auth-code&state={OAUTH_STATE}")

        with patch("mailbridge.auth.flow.webbrowser.open") as mock_open:
            approving = asyncio.ensure_future(browser())
            account_id = await coordinator.authenticate("Work", notify=messages.append)
            await approving

        assert account_id == "work"
        assert AUTH_URL in messages[0]
        mock_open.assert_called_once_with(AUTH_URL)
