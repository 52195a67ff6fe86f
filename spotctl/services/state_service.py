"""
State service for OAuth CSRF nonces.

Issues single-use state values bound to an authorize request and checks
them when the provider redirects back. The same registry backs the
desktop client's local flow and the managed backend's /auth routes.

Entries are stored under ``state:<value>`` as:
{
    'created_at': 1700000000.0,
    'expires_at': 1700000600.0
}
"""

import json
import logging
import secrets
import string
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from spotctl.services.credential_store import CredentialStore
from spotctl.spotify.exceptions import StateExpiredError, StateMismatchError

logger = logging.getLogger(__name__)

STATE_KEY_PREFIX = "state:"
STATE_TTL_SECONDS = 10 * 60
NONCE_LENGTH = 32

_NONCE_ALPHABET = string.ascii_letters + string.digits


def generate_nonce(length: int = NONCE_LENGTH) -> str:
    """Generate a random alphanumeric nonce of at least 16 characters."""
    if length < 16:
        raise ValueError("State nonces must be at least 16 characters")
    return "".join(secrets.choice(_NONCE_ALPHABET) for _ in range(length))


@dataclass
class AuthorizationState:
    """A pending state nonce."""
    value: str
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            'created_at': self.created_at,
            'expires_at': self.expires_at,
        }

    @classmethod
    def from_dict(cls, value: str, data: Dict[str, Any]) -> 'AuthorizationState':
        """Create from a stored dictionary."""
        return cls(
            value=value,
            created_at=float(data.get('created_at', 0)),
            expires_at=float(data.get('expires_at', 0)),
        )


class StateRegistry:
    """
    Issues and consumes authorization state nonces.

    Every nonce lives for ``ttl`` seconds and can be consumed at most
    once; lookup deletes the entry whether or not it had expired.
    """

    def __init__(
        self,
        store: CredentialStore,
        ttl: int = STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._ttl = ttl
        self._clock = clock

    @property
    def ttl(self) -> int:
        return self._ttl

    def issue(self) -> AuthorizationState:
        """
        Create and record a new state nonce.

        Returns:
            The AuthorizationState to embed in the authorize URL.
        """
        now = self._clock()
        state = AuthorizationState(
            value=generate_nonce(),
            created_at=now,
            expires_at=now + self._ttl,
        )
        self._store.set_json(
            f"{STATE_KEY_PREFIX}{state.value}",
            state.to_dict(),
            ttl=self._ttl,
        )
        logger.debug("Issued state nonce (ttl=%ss)", self._ttl)
        return state

    def consume(self, value: Optional[str]) -> AuthorizationState:
        """
        Validate and retire a state nonce returned by the provider.

        Args:
            value: The ``state`` query parameter from the callback.

        Returns:
            The matching AuthorizationState.

        Raises:
            StateMismatchError: If the nonce is unknown or already used.
            StateExpiredError: If the nonce outlived its TTL.
        """
        if not value:
            raise StateMismatchError("Callback carried no state parameter")

        raw = self._store.pop(f"{STATE_KEY_PREFIX}{value}")
        if raw is None:
            logger.warning("Rejected unknown or replayed state nonce")
            raise StateMismatchError(
                "State does not match any pending authorization request"
            )

        state = self._decode(value, raw)
        if state is None or state.is_expired(self._clock()):
            logger.warning("Rejected expired state nonce")
            raise StateExpiredError(
                "Authorization request expired. Please start again."
            )
        return state

    def discard(self, value: str) -> bool:
        """Retire a nonce without validating it. Returns True if it was pending."""
        return self._store.delete(f"{STATE_KEY_PREFIX}{value}")

    def sweep(self) -> int:
        """
        Remove expired nonces.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        removed = 0
        for key in self._store.keys(STATE_KEY_PREFIX):
            value = key[len(STATE_KEY_PREFIX):]
            with self._store.lock(key):
                data = self._store.get_json(key)
                expired = (
                    data is None
                    or AuthorizationState.from_dict(value, data).is_expired(now)
                )
                if expired and self._store.delete(key):
                    removed += 1
        if removed:
            logger.info("Swept %d expired state nonces", removed)
        return removed

    def pending_count(self) -> int:
        return len(self._store.keys(STATE_KEY_PREFIX))

    @staticmethod
    def _decode(value: str, raw: str) -> Optional[AuthorizationState]:
        try:
            return AuthorizationState.from_dict(value, json.loads(raw))
        except (ValueError, TypeError, AttributeError):
            return None
