"""Tests for the Gmail API wrapper.

Uses mocking to test API interactions without real credentials.
"""

from unittest.mock import MagicMock, patch

import pytest
from googleapiclient.errors import HttpError

from helpers import make_record
from mailbridge.auth.client import AccountClient
from mailbridge.errors import RemoteForbidden
from mailbridge.mailbox.gmail import GmailClient, lookup_email


def http_error(status: int) -> HttpError:
    return HttpError(MagicMock(status=status, reason="error"), b"")


@pytest.fixture
def account(client_credentials):
    """Create an account handle with stored tokens."""
    return AccountClient("work", client_credentials, make_record())


@pytest.fixture
def mock_service():
    """Create a mock Gmail service."""
    return MagicMock()


@pytest.fixture
def gmail_client(account, mock_service):
    """Create a GmailClient with mocked service."""
    with patch("mailbridge.mailbox.gmail.build") as mock_build:
        mock_build.return_value = mock_service
        client = GmailClient(account)
        return client


class TestGetProfile:
    """Tests for get_profile method."""

    @pytest.mark.asyncio
    async def test_returns_profile(self, gmail_client, mock_service):
        """get_profile returns the API response."""
        # Arrange - Mock API response
        mock_service.users().getProfile().execute.return_value = {
            "emailAddress": "me@example.com",
            "messagesTotal": 10,
            "threadsTotal": 5,
            "historyId": "123",
        }

        # Act
        profile = await gmail_client.get_profile()

        # Assert
        assert profile["emailAddress"] == "me@example.com"
        mock_service.users().getProfile.assert_called_with(userId="me")

    @pytest.mark.asyncio
    async def test_maps_errors(self, gmail_client, mock_service):
        mock_service.users().getProfile().execute.side_effect = http_error(403)

        with pytest.raises(RemoteForbidden):
            await gmail_client.get_profile()


class TestMessageExists:
    """Tests for message_exists method."""

    @pytest.mark.asyncio
    async def test_found(self, gmail_client, mock_service):
        mock_service.users().messages().get().execute.return_value = {"id": "abc"}

        assert await gmail_client.message_exists("abc") is True
        mock_service.users().messages().get.assert_called_with(
            userId="me", id="abc", format="minimal"
        )

    @pytest.mark.asyncio
    async def test_not_found(self, gmail_client, mock_service):
        mock_service.users().messages().get().execute.side_effect = http_error(404)

        assert await gmail_client.message_exists("abc") is False

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, gmail_client, mock_service):
        mock_service.users().messages().get().execute.side_effect = http_error(403)

        with pytest.raises(RemoteForbidden):
            await gmail_client.message_exists("abc")


class TestLookupEmail:
    """Tests for lookup_email."""

    @pytest.mark.asyncio
    async def test_uses_token_info(self, account):
        with patch(
            "mailbridge.mailbox.gmail.fetch_token_email", return_value="info@example.com"
        ), patch("mailbridge.mailbox.gmail.build") as mock_build:
            email = await lookup_email(account)

        assert email == "info@example.com"
        mock_build.assert_not_called()

    @pytest.mark.asyncio
    async def test_falls_back_to_profile(self, account, mock_service):
        mock_service.users().getProfile().execute.return_value = {
            "emailAddress": "profile@example.com"
        }

        with patch("mailbridge.mailbox.gmail.fetch_token_email", return_value=None), patch(
            "mailbridge.mailbox.gmail.build", return_value=mock_service
        ):
            email = await lookup_email(account)

        assert email == "profile@example.com"

    @pytest.mark.asyncio
    async def test_token_info_failure_falls_back(self, account, mock_service):
        mock_service.users().getProfile().execute.return_value = {
            "emailAddress": "profile@example.com"
        }

        with patch(
            "mailbridge.mailbox.gmail.fetch_token_email", side_effect=OSError("offline")
        ), patch("mailbridge.mailbox.gmail.build", return_value=mock_service):
            email = await lookup_email(account)

        assert email == "profile@example.com"

    @pytest.mark.asyncio
    async def test_gives_none_when_everything_fails(self, account, mock_service):
        mock_service.users().getProfile().execute.side_effect = http_error(500)

        with patch("mailbridge.mailbox.gmail.fetch_token_email", return_value=None), patch(
            "mailbridge.mailbox.gmail.build", return_value=mock_service
        ):
            assert await lookup_email(account) is None
