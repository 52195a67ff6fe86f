"""
Enums for auth modes, session states, flow states and error kinds.

Single source of truth for string constants used across the
client, the services layer and the managed backend.
"""

from enum import StrEnum


class AuthMode(StrEnum):
    """How the client obtains Spotify credentials."""
    SELF_MANAGED = "self_managed"
    MANAGED = "managed"


class SessionState(StrEnum):
    """Derived state of a stored credential. Never persisted."""
    UNAUTHENTICATED = "unauthenticated"
    VALID = "valid"
    EXPIRING = "expiring"
    INVALID = "invalid"


class FlowState(StrEnum):
    """States of an interactive authorization attempt."""
    IDLE = "idle"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    COMPLETE = "complete"
    FAILED = "failed"


class ExchangeErrorKind(StrEnum):
    """Failure categories for token exchange calls."""
    INVALID_REQUEST = "invalid_request"
    NETWORK = "network"
    PROVIDER = "provider"
    MALFORMED = "malformed"
