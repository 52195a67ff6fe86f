"""
spotctl Services Package

This package provides the credential lifecycle services shared by the
desktop client and the managed auth backend. All services can be
imported directly from this package.

Usage:
    from spotctl.services import SelfManagedSession, StateRegistry

    # Or import specific exceptions
    from spotctl.services import CredentialStoreError, AuthInProgressError

Example:
    from spotctl.services import (
        MemoryCredentialStore,
        SelfManagedSession,
    )

    session = SelfManagedSession(MemoryCredentialStore(), exchanger)
    token = session.get_valid_access_token()
"""

# Token encryption
from spotctl.services.token_service import (
    TokenCipher,
    TokenEncryptionError,
    load_or_create_key_file,
)

# Credential stores
from spotctl.services.credential_store import (
    CredentialStore,
    CredentialStoreError,
    MemoryCredentialStore,
    FileCredentialStore,
    RedisCredentialStore,
    EncryptedCredentialStore,
)

# State nonces
from spotctl.services.state_service import (
    StateRegistry,
    AuthorizationState,
    generate_nonce,
    STATE_TTL_SECONDS,
)

# Session state machine
from spotctl.services.session_service import (
    AuthSession,
    SelfManagedSession,
    ManagedSession,
    REFRESH_SKEW_SECONDS,
)

# Interactive flows
from spotctl.services.callback_listener import (
    CallbackListener,
    ListenerBindError,
)
from spotctl.services.auth_flow_service import (
    SelfManagedAuthFlow,
    ManagedAuthFlow,
    AuthInProgressError,
    CALLBACK_TIMEOUT_SECONDS,
)

# Managed backend
from spotctl.services.artifact_service import (
    ArtifactSigner,
    ArtifactError,
)
from spotctl.services.broker_service import (
    SessionBroker,
    mirror_key,
)

__all__ = [
    # Encryption
    "TokenCipher",
    "TokenEncryptionError",
    "load_or_create_key_file",
    # Stores
    "CredentialStore",
    "CredentialStoreError",
    "MemoryCredentialStore",
    "FileCredentialStore",
    "RedisCredentialStore",
    "EncryptedCredentialStore",
    # State
    "StateRegistry",
    "AuthorizationState",
    "generate_nonce",
    "STATE_TTL_SECONDS",
    # Sessions
    "AuthSession",
    "SelfManagedSession",
    "ManagedSession",
    "REFRESH_SKEW_SECONDS",
    # Flows
    "CallbackListener",
    "ListenerBindError",
    "SelfManagedAuthFlow",
    "ManagedAuthFlow",
    "AuthInProgressError",
    "CALLBACK_TIMEOUT_SECONDS",
    # Backend
    "ArtifactSigner",
    "ArtifactError",
    "SessionBroker",
    "mirror_key",
]
