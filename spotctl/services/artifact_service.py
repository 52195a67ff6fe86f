"""
Session artifact signing for the managed backend.

A session artifact is an HS256 JWT handed to the desktop client in place
of raw Spotify tokens. Its embedded token claims are informational only;
the backend's mirror entry stays authoritative.
"""

import logging
import time
from typing import Any, Callable, Dict

import jwt

from spotctl.spotify.auth import TokenBundle

logger = logging.getLogger(__name__)

ARTIFACT_LIFETIME_DAYS = 30
_ALGORITHM = "HS256"


class ArtifactError(Exception):
    """Raised when a session artifact is malformed, forged or expired."""

    pass


class ArtifactSigner:
    """Mints and checks session artifacts."""

    def __init__(
        self,
        secret: str,
        lifetime_days: int = ARTIFACT_LIFETIME_DAYS,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ArtifactError("A signing secret is required")
        self._secret = secret
        self._lifetime = lifetime_days * 24 * 60 * 60
        self._clock = clock

    @property
    def lifetime_seconds(self) -> int:
        return self._lifetime

    def mint(self, bundle: TokenBundle) -> str:
        """
        Create a signed artifact for a freshly exchanged bundle.

        Args:
            bundle: The Spotify tokens the artifact stands in for.

        Returns:
            The encoded JWT.
        """
        issued_at = int(self._clock())
        payload = {
            "spotify_access": bundle.access_token,
            "spotify_refresh": bundle.refresh_token,
            "expires_at": bundle.expires_at,
            "iat": issued_at,
            "exp": issued_at + self._lifetime,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def decode(self, artifact: str) -> Dict[str, Any]:
        """
        Verify signature and expiry.

        Returns:
            The artifact's claims.

        Raises:
            ArtifactError: If verification fails.
        """
        if not artifact:
            raise ArtifactError("Missing session token")
        try:
            # Expiry is checked against the injected clock below.
            claims = jwt.decode(
                artifact,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"require": ["exp", "iat"], "verify_exp": False},
            )
        except jwt.PyJWTError as e:
            logger.info("Rejected session artifact: %s", e)
            raise ArtifactError(f"Invalid session token: {e}")

        if self._clock() >= float(claims["exp"]):
            logger.info("Rejected expired session artifact")
            raise ArtifactError("Session token has expired")
        return claims

    def expires_at(self, artifact: str) -> float:
        """Return the artifact's own expiry (seconds since epoch)."""
        return float(self.decode(artifact)["exp"])
