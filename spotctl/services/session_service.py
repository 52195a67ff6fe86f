"""
Session service: the Spotify credential lifecycle state machine.

Decides whether a stored credential is usable, refreshes it when it is
about to expire, persists the result and discards credentials the
provider no longer accepts. The session state is derived on every
query from the stored credential and the clock; it is never persisted.

Two variants share one contract:
    - SelfManagedSession: holds a TokenBundle, refreshes with Spotify.
    - ManagedSession: holds an opaque session artifact, asks the
      managed backend for the current access token.
"""

import logging
import time
from typing import Callable, Optional, Tuple

from spotctl.enums import SessionState
from spotctl.services.credential_store import (
    CredentialStore,
    CredentialStoreError,
)
from spotctl.services.token_service import TokenEncryptionError
from spotctl.spotify.auth import TokenBundle, TokenExchanger
from spotctl.spotify.exceptions import (
    ExchangeError,
    SessionNotFoundError,
    SpotifyError,
)
from spotctl.spotify.managed import ManagedTokenClient, VerifiedToken

logger = logging.getLogger(__name__)

REFRESH_SKEW_SECONDS = 5 * 60

SELF_MANAGED_TOKEN_KEY = "spotify_tokens"
MANAGED_SESSION_KEY = "spotify_managed_session"

# Failures that mean "no token right now" rather than a programming error.
_RECOVERABLE_ERRORS = (SpotifyError, CredentialStoreError, TokenEncryptionError)


class AuthSession:
    """
    Base class for the credential state machine.

    Subclasses provide ``credential_key``, ``_obtain_token`` (called with
    the per-key lock held), ``_peek_state`` and optionally
    ``_notify_logout``.
    """

    credential_key = ""

    def __init__(
        self,
        store: CredentialStore,
        clock: Callable[[], float] = time.time,
        refresh_skew: float = REFRESH_SKEW_SECONDS,
    ):
        self._store = store
        self._clock = clock
        self._refresh_skew = refresh_skew
        self._invalidated = False

    @property
    def store(self) -> CredentialStore:
        return self._store

    def get_valid_access_token(self) -> Optional[str]:
        """
        Return a usable access token, refreshing it if necessary.

        Concurrent callers are serialized on the credential key, so at
        most one refresh is in flight and later callers reuse its result.
        Never raises: absence of a usable token is returned as None.
        """
        try:
            with self._store.lock(self.credential_key):
                return self._obtain_token()
        except _RECOVERABLE_ERRORS as e:
            logger.warning("No access token available: %s", e)
            return None

    def is_authenticated(self) -> bool:
        """Strict check: a token is currently obtainable."""
        return self.get_valid_access_token() is not None

    def has_credentials(self) -> bool:
        """
        Quick check: a credential is stored.

        Cheaper than is_authenticated() but can report True for a
        credential the provider will reject. Only suitable for fast
        status indicators.
        """
        try:
            return self._store.get(self.credential_key) is not None
        except _RECOVERABLE_ERRORS as e:
            logger.warning("Credential store unavailable: %s", e)
            return False

    def session_state(self) -> SessionState:
        """Derive the current state without contacting the network."""
        try:
            with self._store.lock(self.credential_key):
                return self._peek_state()
        except _RECOVERABLE_ERRORS as e:
            logger.warning("Could not derive session state: %s", e)
            return SessionState.UNAUTHENTICATED

    def logout(self) -> None:
        """
        Forget the stored credential.

        Remote invalidation is best-effort; local deletion always happens.
        Safe to call repeatedly.
        """
        try:
            self._notify_logout()
        except Exception as e:
            logger.warning("Remote logout failed, continuing: %s", e)

        with self._store.lock(self.credential_key):
            deleted = self._store.delete(self.credential_key)
            self._forget()
        self._invalidated = False
        if deleted:
            logger.info("Logged out")

    def discard(self) -> None:
        """Drop the stored credential because it can never be used again."""
        with self._store.lock(self.credential_key):
            self._store.delete(self.credential_key)
            self._forget()
        self._invalidated = True
        logger.info("Discarded unusable credential %s", self.credential_key)

    def _absent_state(self) -> SessionState:
        if self._invalidated:
            return SessionState.INVALID
        return SessionState.UNAUTHENTICATED

    def _obtain_token(self) -> Optional[str]:
        raise NotImplementedError

    def _peek_state(self) -> SessionState:
        raise NotImplementedError

    def _notify_logout(self) -> None:
        pass

    def _forget(self) -> None:
        pass


class SelfManagedSession(AuthSession):
    """Credential state machine over a locally stored TokenBundle."""

    credential_key = SELF_MANAGED_TOKEN_KEY

    def __init__(
        self,
        store: CredentialStore,
        exchanger: TokenExchanger,
        clock: Callable[[], float] = time.time,
        refresh_skew: float = REFRESH_SKEW_SECONDS,
    ):
        super().__init__(store, clock=clock, refresh_skew=refresh_skew)
        self._exchanger = exchanger

    def load_bundle(self) -> Optional[TokenBundle]:
        """Load the stored bundle, dropping unreadable entries."""
        data = self._store.get_json(self.credential_key)
        if data is None:
            return None
        try:
            return TokenBundle.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Stored token bundle is corrupt, removing: %s", e)
            self._store.delete(self.credential_key)
            return None

    def store_bundle(self, bundle: TokenBundle) -> None:
        """Persist a bundle obtained from a successful exchange."""
        if not bundle.refresh_token:
            raise ValueError("Refusing to store a bundle without refresh_token")
        with self._store.lock(self.credential_key):
            self._store.set_json(self.credential_key, bundle.to_dict())
        self._invalidated = False
        logger.info("Stored Spotify token bundle")

    def _obtain_token(self) -> Optional[str]:
        bundle = self.load_bundle()
        if bundle is None:
            return None

        if not bundle.needs_refresh(self._clock(), self._refresh_skew):
            return bundle.access_token

        logger.info(
            "Access token expiring in %.0fs, refreshing",
            bundle.seconds_remaining(self._clock()),
        )
        try:
            refreshed = self._exchanger.refresh(bundle.refresh_token)
        except ExchangeError as e:
            if not e.is_rejection:
                logger.warning("Token refresh failed, keeping session: %s", e)
                return None
            logger.warning("Refresh token rejected, discarding session: %s", e)
            self._store.delete(self.credential_key)
            self._invalidated = True
            return None

        self._store.set_json(self.credential_key, refreshed.to_dict())
        return refreshed.access_token

    def _peek_state(self) -> SessionState:
        bundle = self.load_bundle()
        if bundle is None:
            return self._absent_state()
        if bundle.needs_refresh(self._clock(), self._refresh_skew):
            return SessionState.EXPIRING
        return SessionState.VALID


class ManagedSession(AuthSession):
    """
    Credential state machine over a managed-backend session artifact.

    The backend is authoritative for token expiry and refresh; the
    access token it returns is cached in memory until it nears expiry.
    """

    credential_key = MANAGED_SESSION_KEY

    def __init__(
        self,
        store: CredentialStore,
        backend: ManagedTokenClient,
        clock: Callable[[], float] = time.time,
        refresh_skew: float = REFRESH_SKEW_SECONDS,
    ):
        super().__init__(store, clock=clock, refresh_skew=refresh_skew)
        self._backend = backend
        self._cached: Optional[Tuple[str, VerifiedToken]] = None

    def load_artifact(self) -> Optional[str]:
        return self._store.get(self.credential_key)

    def store_artifact(
        self, artifact: str, verified: Optional[VerifiedToken] = None
    ) -> None:
        """Persist a verified session artifact."""
        with self._store.lock(self.credential_key):
            self._store.set(self.credential_key, artifact)
            self._cached = (artifact, verified) if verified else None
        self._invalidated = False
        logger.info("Stored managed session artifact")

    def _cached_token(self, artifact: str) -> Optional[VerifiedToken]:
        if self._cached is None or self._cached[0] != artifact:
            return None
        verified = self._cached[1]
        if verified.needs_refresh(self._clock(), self._refresh_skew):
            return None
        return verified

    def _obtain_token(self) -> Optional[str]:
        artifact = self.load_artifact()
        if artifact is None:
            self._cached = None
            return None

        cached = self._cached_token(artifact)
        if cached is not None:
            return cached.access_token

        try:
            verified = self._backend.verify(artifact)
        except SessionNotFoundError as e:
            logger.warning("Backend no longer knows this session: %s", e)
            self._store.delete(self.credential_key)
            self._cached = None
            self._invalidated = True
            return None
        except ExchangeError as e:
            logger.warning("Session verification failed: %s", e)
            return None

        self._cached = (artifact, verified)
        return verified.access_token

    def _peek_state(self) -> SessionState:
        artifact = self.load_artifact()
        if artifact is None:
            return self._absent_state()
        if self._cached_token(artifact) is not None:
            return SessionState.VALID
        return SessionState.EXPIRING

    def _notify_logout(self) -> None:
        artifact = self.load_artifact()
        if artifact:
            self._backend.logout(artifact)

    def _forget(self) -> None:
        self._cached = None
