"""Interactive OAuth 2.0 authorization for one account at a time.

Uses the loopback redirect: a temporary aiohttp listener on
localhost:<port>/oauth2callback receives the authorization code after the
user approves access in their browser, and the code is exchanged for
tokens that are saved through the AccountRegistry.

Session states:

    idle -> listening -> code_received -> exchanging -> complete
    listening | code_received | exchanging -> failed
    listening -> timed_out

Terminal states (complete, failed, timed_out) tear the listener down, after
which a new session can be started.
"""

import asyncio
import html
import logging
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from aiohttp import web
from google_auth_oauthlib.flow import Flow

from mailbridge.auth.accounts import normalize_account_id
from mailbridge.auth.client import GMAIL_SCOPES, AccountClient, credentials_to_record
from mailbridge.auth.registry import AccountRegistry
from mailbridge.errors import (
    AuthFlowAlreadyRunning,
    AuthFlowFailed,
    AuthTimeout,
    CallbackPortInUse,
    MailbridgeError,
)
from mailbridge.mailbox.gmail import lookup_email

logger = logging.getLogger(__name__)

CALLBACK_HOST = "localhost"
CALLBACK_PATH = "/oauth2callback"
DEFAULT_PORT = 3000
DEFAULT_TIMEOUT = 300.0


class AuthState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    CODE_RECEIVED = "code_received"
    EXCHANGING = "exchanging"
    COMPLETE = "complete"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


_ACTIVE_STATES = (AuthState.LISTENING, AuthState.CODE_RECEIVED, AuthState.EXCHANGING)


@dataclass(frozen=True)
class AuthStartResult:
    """Where to send the user, and where Google will send them back."""

    auth_url: str
    callback_url: str


def _page(status: int, title: str, *paragraphs: str) -> web.Response:
    """Render a minimal HTML page for the browser tab."""
    body = "\n".join(f"  <p>{paragraph}</p>" for paragraph in paragraphs)
    text = f"""<!DOCTYPE html>
<html>
<head><title>{html.escape(title)}</title></head>
<body style="font-family: sans-serif; text-align: center; padding: 50px;">
  <h1>{html.escape(title)}</h1>
{body}
</body>
</html>
"""
    return web.Response(status=status, text=text, content_type="text/html")


def _failure_page(status: int, message: str) -> web.Response:
    return _page(
        status,
        "Authentication Failed",
        html.escape(message),
        "You can close this window.",
    )


class AuthFlowCoordinator:
    """Runs the browser authorization handshake.

    Only one session can be active per coordinator, since the callback
    port can only be bound once.

    Example:
        coordinator = AuthFlowCoordinator(registry)
        started = await coordinator.start("work")
        print(started.auth_url)
        account_id = await coordinator.wait()
    """

    def __init__(
        self,
        registry: AccountRegistry,
        port: int = DEFAULT_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        host: str = CALLBACK_HOST,
    ):
        """Initialize the coordinator.

        Args:
            registry: Registry that stores new tokens.
            port: Local port for the callback listener.
            timeout: Seconds to wait for the callback.
            host: Interface the listener binds to.
        """
        self._registry = registry
        self._port = port
        self._timeout = timeout
        self._host = host

        self._state = AuthState.IDLE
        self._starting = False
        self._account_id: str | None = None
        self._email: str | None = None
        self._flow: Flow | None = None
        self._oauth_state: str | None = None
        self._runner: web.AppRunner | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._done = asyncio.Event()
        self._error: MailbridgeError | None = None
        self._teardown_task: asyncio.Task | None = None

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def account_id(self) -> str | None:
        """Account of the current or last session."""
        return self._account_id

    @property
    def callback_url(self) -> str:
        return f"http://{CALLBACK_HOST}:{self._port}{CALLBACK_PATH}"

    def is_running(self) -> bool:
        """Check whether a session is active."""
        return self._starting or self._state in _ACTIVE_STATES

    async def start(self, account_id: str) -> AuthStartResult:
        """Start a session and bind the callback listener.

        Args:
            account_id: Account the new tokens will be stored under.

        Returns:
            The consent URL to open and the callback URL.

        Raises:
            InvalidAccountId: If the ID is malformed.
            AuthFlowAlreadyRunning: If a session is active.
            CallbackPortInUse: If the port is already bound.
            CredentialsFileMissing: If the OAuth keys file is missing.
        """
        account_id = normalize_account_id(account_id)
        if self.is_running():
            raise AuthFlowAlreadyRunning(
                f'Authorization for account "{self._account_id}" is already in progress.'
            )

        self._starting = True
        try:
            client = self._registry.client_credentials
            flow = Flow.from_client_config(
                client.to_client_config(self.callback_url),
                scopes=GMAIL_SCOPES,
                redirect_uri=self.callback_url,
            )
            # offline + consent: Google only returns a refresh token on consent
            auth_url, oauth_state = flow.authorization_url(
                access_type="offline",
                prompt="consent",
            )
            runner = await self._bind()
        finally:
            self._starting = False

        self._account_id = account_id
        self._email = None
        self._flow = flow
        self._oauth_state = oauth_state
        self._runner = runner
        self._error = None
        self._done = asyncio.Event()
        self._teardown_task = None
        self._state = AuthState.LISTENING
        self._timer = asyncio.get_running_loop().call_later(self._timeout, self._on_timeout)

        logger.info(
            'Waiting for authorization of account "%s" on %s', account_id, self.callback_url
        )
        return AuthStartResult(auth_url=auth_url, callback_url=self.callback_url)

    async def _bind(self) -> web.AppRunner:
        app = web.Application()
        app.router.add_get(CALLBACK_PATH, self._handle_callback)

        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        try:
            await site.start()
        except OSError as e:
            await runner.cleanup()
            raise CallbackPortInUse(
                f"Port {self._port} is already in use. Stop the program using it "
                "or set auth.port in config.toml."
            ) from e

        logger.debug("OAuth callback listener started on port %d", self._port)
        return runner

    async def wait(self) -> str:
        """Wait for the session to end.

        Returns:
            The authorized account ID.

        Raises:
            AuthTimeout: If no callback arrived in time.
            AuthFlowFailed: If the user denied access or the exchange failed.
        """
        if self._state is AuthState.IDLE and not self._done.is_set():
            raise AuthFlowFailed("No authorization in progress.")

        await self._done.wait()
        if self._teardown_task is not None:
            await self._teardown_task

        if self._error is not None:
            raise self._error
        return self._account_id

    async def stop(self) -> None:
        """Cancel the active session, if any, and release the port."""
        if self._state in _ACTIVE_STATES:
            self._finish(AuthState.FAILED, AuthFlowFailed("Authorization was cancelled."))
        if self._teardown_task is not None:
            await self._teardown_task

    async def authenticate(
        self,
        account_id: str,
        open_browser: bool = True,
        notify: Callable[[str], None] = print,
    ) -> str:
        """Run a whole session: start, show the URL, wait.

        Args:
            account_id: Account to authorize.
            open_browser: Try to open the consent page automatically.
            notify: Receives the instructions for the user.

        Returns:
            The authorized account ID.
        """
        started = await self.start(account_id)
        notify(
            f'Authorize account "{self._account_id}" by visiting this URL:\n\n'
            f"{started.auth_url}\n"
        )
        if open_browser and not webbrowser.open(started.auth_url):
            logger.debug("No browser available; waiting for the URL to be opened manually")
        return await self.wait()

    # --- Session transitions ---

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self) -> None:
        self._timer = None
        if self._state is AuthState.LISTENING:
            logger.warning('Authorization of account "%s" timed out', self._account_id)
            self._finish(
                AuthState.TIMED_OUT,
                AuthTimeout(
                    f"Authorization timed out after {int(self._timeout)} seconds."
                ),
            )

    def _finish(self, state: AuthState, error: MailbridgeError | None = None) -> None:
        """Enter a terminal state and tear the listener down."""
        self._cancel_timer()
        self._state = state
        self._error = error
        self._flow = None
        self._oauth_state = None
        # Scheduled, not awaited: the callback handler runs on this listener
        self._teardown_task = asyncio.ensure_future(self._teardown(self._runner))
        self._runner = None
        self._done.set()

    async def _teardown(self, runner: web.AppRunner | None) -> None:
        if runner is not None:
            await runner.cleanup()
            logger.debug("OAuth callback listener stopped")

    # --- Callback ---

    async def _handle_callback(self, request: web.Request) -> web.Response:
        if self._state is not AuthState.LISTENING:
            return _failure_page(400, "No authorization is in progress.")

        query = request.query
        error = query.get("error")
        if error:
            logger.error("Authorization denied: %s", error)
            self._finish(AuthState.FAILED, AuthFlowFailed(f"Authorization error: {error}"))
            return _failure_page(400, f"Error: {error}")

        code = query.get("code")
        if not code:
            self._finish(AuthState.FAILED, AuthFlowFailed("No authorization code received."))
            return _failure_page(400, "No authorization code received.")

        if query.get("state") != self._oauth_state:
            logger.error("OAuth state mismatch in callback")
            self._finish(AuthState.FAILED, AuthFlowFailed("State parameter mismatch."))
            return _failure_page(400, "State parameter mismatch.")

        self._state = AuthState.CODE_RECEIVED
        self._cancel_timer()

        account_id = self._account_id
        try:
            email = await self._exchange(code)
        except Exception as e:
            logger.error('Failed to authenticate account "%s": %s', account_id, e)
            if self._state is not AuthState.EXCHANGING:
                return _failure_page(400, "Authorization was cancelled.")
            self._finish(
                AuthState.FAILED,
                AuthFlowFailed(f"Failed to exchange authorization code for tokens: {e}"),
            )
            return _failure_page(
                500, f"Failed to exchange authorization code for tokens. Error: {e}"
            )

        if self._state is not AuthState.EXCHANGING:
            # stop() ended the session while the exchange ran
            return _failure_page(400, "Authorization was cancelled.")

        self._email = email
        self._finish(AuthState.COMPLETE)
        logger.info(
            'Successfully authenticated account "%s"%s',
            account_id,
            f" ({email})" if email else "",
        )

        paragraphs = [
            f"Account <strong>&quot;{html.escape(account_id)}&quot;</strong> has been connected."
        ]
        if email:
            paragraphs.append(f"Email: {html.escape(email)}")
        paragraphs.append("You can close this window and return to your application.")
        return _page(200, "Authentication Successful", *paragraphs)

    async def _exchange(self, code: str) -> str | None:
        """Exchange the code, look up the email, and save the tokens."""
        self._state = AuthState.EXCHANGING
        flow = self._flow

        await asyncio.to_thread(flow.fetch_token, code=code)
        tokens = credentials_to_record(flow.credentials)
        if not tokens.get("access_token"):
            raise AuthFlowFailed("Received invalid tokens")

        if self._state is not AuthState.EXCHANGING:
            return None

        probe = AccountClient(self._account_id, self._registry.client_credentials, tokens)
        email = await lookup_email(probe)

        # stop() may have ended the session while this coroutine was suspended
        if self._state is not AuthState.EXCHANGING:
            return None

        await self._registry.save_tokens(self._account_id, tokens, email=email)
        return email

    @property
    def email(self) -> str | None:
        """Email of the account authorized by the last completed session."""
        return self._email
