"""
Authorization flow service.

Drives the interactive step of the OAuth Authorization Code flow and
hands the result to a session. Two variants share the same shape:

    - SelfManagedAuthFlow: builds the authorize URL with a local state
      nonce, opens the browser and receives the code on a one-shot
      local listener, then exchanges it with Spotify.
    - ManagedAuthFlow: asks the managed backend for the authorize URL,
      opens the browser and asks the user to paste the session artifact
      shown on the backend's landing page, then verifies it.

Only one attempt may run per flow object at a time.
"""

import functools
import logging
import secrets
import threading
import webbrowser
from typing import Callable, Dict, Optional

from spotctl.enums import FlowState
from spotctl.services.callback_listener import CallbackListener
from spotctl.services.session_service import ManagedSession, SelfManagedSession
from spotctl.services.state_service import StateRegistry
from spotctl.spotify.auth import TokenBundle, TokenExchanger
from spotctl.spotify.exceptions import (
    AuthCancelledError,
    MissingCodeError,
    ProviderDeniedError,
    SessionNotFoundError,
    SpotifyAuthError,
    StateMismatchError,
)
from spotctl.spotify.managed import ManagedTokenClient, VerifiedToken

logger = logging.getLogger(__name__)

CALLBACK_TIMEOUT_SECONDS = 5 * 60


class AuthInProgressError(SpotifyAuthError):
    """Raised when authenticate() is called while an attempt is pending."""
    pass


class _FlowBase:
    """Shared single-attempt guard and state bookkeeping."""

    def __init__(self):
        self._attempt_lock = threading.Lock()
        self.state = FlowState.IDLE
        self.failure: Optional[Exception] = None

    def _begin(self) -> None:
        if not self._attempt_lock.acquire(blocking=False):
            raise AuthInProgressError(
                "An authorization attempt is already in progress"
            )
        self.state = FlowState.IDLE
        self.failure = None

    def _transition(self, state: FlowState) -> None:
        logger.debug("Authorization flow: %s -> %s", self.state, state)
        self.state = state

    def _fail(self, error: Exception) -> None:
        self.failure = error
        self._transition(FlowState.FAILED)
        logger.warning("Authorization failed: %s", error)

    def _end(self) -> None:
        self._attempt_lock.release()

    @property
    def in_progress(self) -> bool:
        return self._attempt_lock.locked()


class SelfManagedAuthFlow(_FlowBase):
    """
    Interactive flow using the user's own Spotify application.

    Example:
        flow = SelfManagedAuthFlow(exchanger, session, states)
        bundle = flow.authenticate()
    """

    def __init__(
        self,
        exchanger: TokenExchanger,
        session: SelfManagedSession,
        states: StateRegistry,
        open_browser: Callable[[str], object] = webbrowser.open,
        timeout: float = CALLBACK_TIMEOUT_SECONDS,
        listener_factory: Callable[..., CallbackListener] = CallbackListener,
    ):
        super().__init__()
        self._exchanger = exchanger
        self._session = session
        self._states = states
        self._open_browser = open_browser
        self._timeout = timeout
        self._listener_factory = listener_factory

    def authenticate(
        self, cancel_event: Optional[threading.Event] = None
    ) -> TokenBundle:
        """
        Run the full interactive flow.

        Args:
            cancel_event: Set it from another thread to abandon the wait.

        Returns:
            The stored TokenBundle.

        Raises:
            AuthInProgressError: If another attempt is pending.
            ConfigError: If the client secret is missing.
            AuthFlowError: ProviderDenied, StateMismatch, MissingCode,
                Timeout or Cancelled.
            ExchangeError: If the code exchange fails.
        """
        self._begin()
        pending = None
        try:
            # Fail on missing configuration before the browser opens.
            self._exchanger.credentials.require_secret()

            pending = self._states.issue()
            auth_url = self._exchanger.get_auth_url(pending.value)
            redirect_uri = self._exchanger.credentials.redirect_uri

            evaluate = functools.partial(
                self.evaluate_callback, expected_state=pending.value
            )
            with self._listener_factory(redirect_uri, evaluate) as listener:
                self._transition(FlowState.AWAITING_CALLBACK)
                self._open_browser(auth_url)
                code = listener.wait(self._timeout, cancel_event=cancel_event)

            self._transition(FlowState.EXCHANGING)
            bundle = self._exchanger.exchange_code(code, redirect_uri)
            self._session.store_bundle(bundle)
            self._transition(FlowState.COMPLETE)
            logger.info("Spotify authorization complete")
            return bundle
        except Exception as e:
            self._fail(e)
            raise
        finally:
            if pending is not None:
                self._states.discard(pending.value)
            self._end()

    def evaluate_callback(
        self, params: Dict[str, str], expected_state: str
    ) -> str:
        """
        Validate redirect parameters and return the authorization code.

        The state must equal the nonce issued for this attempt and is
        checked before the code is looked at, so a callback carrying any
        other state never leads to a token exchange.
        """
        error = params.get("error")
        if error:
            raise ProviderDeniedError(error, params.get("error_description"))

        state = params.get("state") or ""
        if not secrets.compare_digest(
            state.encode("utf-8"), expected_state.encode("utf-8")
        ):
            logger.warning("Rejected callback for another authorization attempt")
            raise StateMismatchError(
                "State does not match this authorization request"
            )
        self._states.consume(state)

        code = params.get("code")
        if not code:
            raise MissingCodeError("Callback did not include a code")
        return code


class ManagedAuthFlow(_FlowBase):
    """
    Interactive flow brokered by the managed auth backend.

    ``prompt`` asks the user for the session artifact and returns it, or
    None when the user dismissed the prompt.
    """

    def __init__(
        self,
        backend: ManagedTokenClient,
        session: ManagedSession,
        prompt: Callable[[str], Optional[str]],
        open_browser: Callable[[str], object] = webbrowser.open,
    ):
        super().__init__()
        self._backend = backend
        self._session = session
        self._prompt = prompt
        self._open_browser = open_browser

    def authenticate(self) -> VerifiedToken:
        """
        Run the managed flow.

        Returns:
            The verified access token for the new session.

        Raises:
            AuthInProgressError: If another attempt is pending.
            AuthCancelledError: If the user supplied no artifact.
            SessionNotFoundError: If the backend rejects the artifact.
            ExchangeError: If the backend cannot be reached.
        """
        self._begin()
        try:
            start = self._backend.start_auth()
            self._transition(FlowState.AWAITING_CALLBACK)
            self._open_browser(start.auth_url)

            artifact = self._prompt(
                "Paste the session token shown in the browser"
            )
            artifact = (artifact or "").strip()
            if not artifact:
                raise AuthCancelledError("Authentication cancelled")

            self._transition(FlowState.EXCHANGING)
            try:
                verified = self._backend.verify(artifact)
            except SessionNotFoundError:
                # Any artifact we held is no longer usable either.
                self._session.discard()
                raise

            self._session.store_artifact(artifact, verified)
            self._transition(FlowState.COMPLETE)
            logger.info("Managed Spotify authorization complete")
            return verified
        except Exception as e:
            self._fail(e)
            raise
        finally:
            self._end()
