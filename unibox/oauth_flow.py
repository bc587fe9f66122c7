"""
Loopback OAuth2 implicit-grant login.

A LoopbackSession drives one login attempt at a time:

1. Build the authorization URL with a fresh anti-forgery state and make sure
   the loopback listener is accepting requests.
2. Open the URL in the system browser.
3. Wait for the provider's redirect on the authorize path and answer it with a
   page whose script re-navigates to the token path, carrying the current URL
   (fragment included) as the url_with_fragment query parameter.
4. Wait for that second request, parse the token out of the fragment and check
   the state.

The flow needs a browser that runs JavaScript. Headless or script-disabled
clients never make the second request; the attempt then ends on its timeout
or on cancel().

The listener is created on the first attempt and reused by the following ones.
It is restarted before each attempt and is not torn down on failure.
"""

import enum
import hmac
import threading
import webbrowser
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, NamedTuple, Optional

from .constants import OAUTH_CALLBACK_TIMEOUT, DEFAULT_REDIRECT_BASE
from .oauth_server import LoopbackListener
from .oauth_token import (
    AuthorizationRequest,
    OAuthResult,
    extract_url_with_fragment,
    parse_token_fragment,
    result_from_fragment,
)
from .utils import AuthCancelled, AuthError, BrowserLaunchError, InvalidRedirectBase, StateMismatch


class FlowState(enum.Enum):
    IDLE = 'idle'
    AWAITING_BROWSER_AUTHORIZE = 'awaiting browser authorization'
    AWAITING_PRIMARY_REDIRECT = 'awaiting primary redirect'
    AWAITING_SECONDARY_REDIRECT = 'awaiting secondary redirect'
    COMPLETED = 'completed'
    FAILED = 'failed'


class AuthResult(NamedTuple):
    """Outcome of a login attempt: either result or error is set."""

    success: bool
    result: Optional[OAuthResult]
    error: Optional[AuthError]

    @property
    def access_token(self) -> str:
        return self.result.access_token if self.success else ''


def _check_cancelled(cancelled: threading.Event):
    if cancelled.is_set():
        raise AuthCancelled("login cancelled")


class LoopbackSession:
    """Owns the loopback listener and runs login attempts over it."""

    def __init__(self, app_key: str, redirect_base_uri: str = DEFAULT_REDIRECT_BASE,
                 progress: Optional[Callable[[FlowState, str], None]] = None,
                 quiet: bool = False,
                 listener: Optional[LoopbackListener] = None):
        """
        Args:
            app_key: The application key (OAuth client_id).
            redirect_base_uri: Loopback base; "authorize" and "token" are appended to it.
            progress: Called with (state, message) on every stage transition.
            quiet: If True, do not print progress to the terminal.
            listener: Listener to use, created on the first attempt if not given.
        """
        self.app_key = app_key
        self.redirect_base_uri = redirect_base_uri
        self.progress = progress
        self.quiet = quiet
        self.listener = listener
        self.state = FlowState.IDLE
        self.authorization_request = None
        self.browser_error = None
        self._attempt_lock = threading.Lock()
        self._executor = None
        self._cancelled = threading.Event()

    def _transition(self, state: FlowState, message: str):
        self.state = state
        if not self.quiet:
            print(message)
        if self.progress is not None:
            self.progress(state, message)

    def authenticate(self, timeout: Optional[float] = OAUTH_CALLBACK_TIMEOUT,
                     no_browser: bool = False) -> AuthResult:
        """
        Run one login attempt.

        Args:
            timeout: Maximum time to wait for each redirect (seconds), None to wait forever.
            no_browser: If True, print the URL instead of opening the browser. The URL
                is printed even when quiet, since the user has no other way to get it.

        Returns:
            AuthResult with the token on success, or the AuthError that ended the attempt.
        """
        return self._attempt(timeout, no_browser, self._new_attempt())

    def _new_attempt(self) -> threading.Event:
        # cancel() only ever targets the most recently requested attempt.
        self._cancelled = threading.Event()
        return self._cancelled

    def _attempt(self, timeout, no_browser, cancelled: threading.Event) -> AuthResult:
        with self._attempt_lock:
            try:
                result = self._run(timeout, no_browser, cancelled)
            except AuthError as e:
                if e.stage is None:
                    e.stage = self.state
                self._transition(FlowState.FAILED, f"Authentication failed: {e}")
                return AuthResult(False, None, e)

            self._transition(FlowState.COMPLETED, "Authentication successful.")
            return AuthResult(True, result, None)

    def _run(self, timeout, no_browser, cancelled) -> OAuthResult:
        self.state = FlowState.IDLE
        self.browser_error = None
        request = AuthorizationRequest(self.app_key, self.redirect_base_uri)
        self.authorization_request = request
        try:
            endpoint = request.endpoint
        except ValueError as e:
            raise InvalidRedirectBase(self.redirect_base_uri, str(e))

        _check_cancelled(cancelled)
        if self.listener is None:
            self.listener = LoopbackListener()

        # Must be accepting before the browser is sent anywhere.
        port = self.listener.ensure_started((endpoint.host, endpoint.port))
        # A cancel() that ran before the listener existed, or before this
        # restart, has nothing left to stop.
        _check_cancelled(cancelled)

        self._transition(FlowState.AWAITING_BROWSER_AUTHORIZE,
                         f"OAuth callback server started on port {port}")
        self._launch_browser(request.authorize_url, no_browser)

        self._transition(FlowState.AWAITING_PRIMARY_REDIRECT, "Waiting for authentication...")
        _check_cancelled(cancelled)
        self.listener.await_request(endpoint.authorize_path,
                                    body=endpoint.redirect_document(),
                                    timeout=timeout)

        self._transition(FlowState.AWAITING_SECONDARY_REDIRECT, "Waiting for token redirect...")
        _check_cancelled(cancelled)
        inbound = self.listener.await_request(endpoint.token_path, timeout=timeout)

        url = extract_url_with_fragment(inbound.query)
        result = result_from_fragment(parse_token_fragment(url))

        if not hmac.compare_digest(result.state.encode(), request.anti_forgery_state.encode()):
            raise StateMismatch(request.anti_forgery_state, result.state)

        return result

    def _launch_browser(self, url: str, no_browser: bool):
        if no_browser:
            print(f"\nPlease visit this URL to authenticate:\n{url}\n")
            return

        if not self.quiet:
            print("Opening browser for authentication...")
        try:
            opened = webbrowser.open(url)
        except webbrowser.Error as e:
            opened = False
            self.browser_error = BrowserLaunchError(f"could not open browser: {e}",
                                                    stage=FlowState.AWAITING_BROWSER_AUTHORIZE)
        if not opened:
            if self.browser_error is None:
                self.browser_error = BrowserLaunchError("no usable browser found",
                                                        stage=FlowState.AWAITING_BROWSER_AUTHORIZE)
            # Not fatal, the user can still open it by hand.
            print(f"\nCould not open browser. Please visit this URL:\n{url}\n")
            if self.progress is not None:
                self.progress(self.state, str(self.browser_error))

    def start(self, timeout: Optional[float] = OAUTH_CALLBACK_TIMEOUT,
              no_browser: bool = False) -> 'Future[AuthResult]':
        """Run authenticate() on a worker thread and return its future."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='unibox-login')
        return self._executor.submit(self._attempt, timeout, no_browser, self._new_attempt())

    def cancel(self):
        """
        Abandon the current attempt, if any. The next attempt restarts the listener.

        Also holds for an attempt handed to start() that has not reached the
        listener yet: it ends with AuthCancelled as soon as it runs.
        """
        # Set before stopping so an attempt that restarts the listener after
        # stop() still sees it.
        self._cancelled.set()
        if self.listener is not None:
            self.listener.stop()

    def close(self):
        self.cancel()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, tb):
        self.close()
        return False


def authenticate(app_key: str, redirect_base_uri: str = DEFAULT_REDIRECT_BASE, **kwargs) -> AuthResult:
    """Run a single login attempt on a throwaway session."""
    timeout = kwargs.pop('timeout', OAUTH_CALLBACK_TIMEOUT)
    no_browser = kwargs.pop('no_browser', False)
    with LoopbackSession(app_key, redirect_base_uri, **kwargs) as session:
        return session.authenticate(timeout=timeout, no_browser=no_browser)
