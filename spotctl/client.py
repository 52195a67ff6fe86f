"""
Client facade for the desktop side of spotctl.

Wires the credential store, session controller and interactive flow
for the configured auth mode behind a single object, so callers only
deal with login, logout and "give me a token".

Usage:
    from config import ClientConfig
    from spotctl.client import build_auth_client

    client = build_auth_client(ClientConfig.from_env())
    if not client.is_authenticated():
        client.login()
    token = client.get_valid_access_token()
"""

import logging
import webbrowser
from pathlib import Path
from typing import Callable, Optional, Union

from spotctl.enums import AuthMode, SessionState
from spotctl.services import (
    CredentialStore,
    EncryptedCredentialStore,
    FileCredentialStore,
    ManagedAuthFlow,
    ManagedSession,
    MemoryCredentialStore,
    SelfManagedAuthFlow,
    SelfManagedSession,
    StateRegistry,
    TokenCipher,
    load_or_create_key_file,
)
from spotctl.services.session_service import AuthSession
from spotctl.spotify import (
    ConfigError,
    ManagedTokenClient,
    SpotifyCredentials,
    TokenExchanger,
)

logger = logging.getLogger(__name__)

CREDENTIALS_DIRNAME = "credentials"
KEY_FILENAME = "secret.key"


class AuthClient:
    """
    One auth mode's session and flow behind a uniform interface.

    Attributes:
        mode: The AuthMode this client was built for.
    """

    def __init__(
        self,
        mode: AuthMode,
        session: AuthSession,
        flow: Union[SelfManagedAuthFlow, ManagedAuthFlow],
    ):
        self.mode = mode
        self._session = session
        self._flow = flow

    @property
    def session(self) -> AuthSession:
        return self._session

    @property
    def flow(self) -> Union[SelfManagedAuthFlow, ManagedAuthFlow]:
        return self._flow

    def login(self, **kwargs):
        """Run the interactive flow for this mode."""
        logger.info("Starting %s login", self.mode)
        return self._flow.authenticate(**kwargs)

    def logout(self) -> None:
        self._session.logout()

    def get_valid_access_token(self) -> Optional[str]:
        return self._session.get_valid_access_token()

    def is_authenticated(self) -> bool:
        return self._session.is_authenticated()

    def has_credentials(self) -> bool:
        return self._session.has_credentials()

    def session_state(self) -> SessionState:
        return self._session.session_state()


def _default_prompt(message: str) -> Optional[str]:
    try:
        return input(f"{message}: ")
    except EOFError:
        return None


def build_credential_store(data_dir: Path, secret_key: Optional[str] = None) -> CredentialStore:
    """
    Encrypted file store under ``data_dir``.

    Without an explicit secret the key comes from ``data_dir/secret.key``,
    created on first use.
    """
    data_dir = Path(data_dir)
    if not secret_key:
        secret_key = load_or_create_key_file(data_dir / KEY_FILENAME)
    inner = FileCredentialStore(data_dir / CREDENTIALS_DIRNAME)
    return EncryptedCredentialStore(inner, TokenCipher(secret_key))


def build_auth_client(
    client_config,
    prompt: Callable[[str], Optional[str]] = _default_prompt,
    open_browser: Callable[[str], object] = webbrowser.open,
    store: Optional[CredentialStore] = None,
) -> AuthClient:
    """
    Build an AuthClient from a ClientConfig.

    Args:
        client_config: Settings, usually ``ClientConfig.from_env()``.
        prompt: Asks the user for the session token in managed mode.
        open_browser: Opens the authorize URL.
        store: Credential store override; defaults to the encrypted
            file store under the configured data directory.

    Raises:
        ConfigError: If the auth mode or its required settings are
            missing or invalid.
    """
    try:
        mode = AuthMode(client_config.auth_mode)
    except ValueError:
        raise ConfigError(
            f"Unknown auth mode {client_config.auth_mode!r}. "
            f"Use one of: {', '.join(m.value for m in AuthMode)}"
        )

    if store is None:
        store = build_credential_store(
            client_config.data_dir, client_config.secret_key
        )

    if mode == AuthMode.MANAGED:
        backend = ManagedTokenClient(client_config.backend_url)
        session = ManagedSession(store, backend)
        flow = ManagedAuthFlow(
            backend, session, prompt=prompt, open_browser=open_browser
        )
        return AuthClient(mode, session, flow)

    credentials = SpotifyCredentials(
        client_id=client_config.client_id or "",
        client_secret=client_config.client_secret,
        redirect_uri=client_config.redirect_uri,
    )
    exchanger = TokenExchanger(credentials)
    session = SelfManagedSession(store, exchanger)
    # Nonces only need to outlive one login in this process.
    states = StateRegistry(MemoryCredentialStore())
    flow = SelfManagedAuthFlow(
        exchanger, session, states, open_browser=open_browser
    )
    return AuthClient(mode, session, flow)
