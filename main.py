"""spotctl command line entry point.

Commands:
  login    Authorize spotctl with Spotify
  logout   Forget the stored Spotify credential
  status   Show whether a usable token is available
  token    Print a valid access token (refreshing if needed)
"""

import argparse
import dataclasses
import logging
import sys

from config import ClientConfig
from spotctl.client import build_auth_client
from spotctl.enums import SessionState
from spotctl.spotify import SpotifyAuthError

logger = logging.getLogger(__name__)


def cmd_login(client) -> int:
    """Run the interactive login for the configured mode."""
    if client.is_authenticated():
        print("Already logged in to Spotify.")
        return 0

    print("Opening your browser to authorize spotctl with Spotify...")
    try:
        client.login()
    except KeyboardInterrupt:
        print("\nLogin cancelled.")
        return 1
    except SpotifyAuthError as e:
        print(f"Login failed: {e}")
        return 1

    print("Logged in to Spotify.")
    return 0


def cmd_logout(client) -> int:
    client.logout()
    print("Logged out.")
    return 0


def cmd_status(client) -> int:
    """Report the session state; exit 0 only when a token is obtainable."""
    state = client.session_state()
    authenticated = client.is_authenticated()

    print(f"Auth mode: {client.mode}")
    if authenticated:
        print("Status:    authenticated")
        return 0
    if state == SessionState.INVALID:
        print("Status:    session expired, run `spotctl login`")
    else:
        print("Status:    not logged in, run `spotctl login`")
    return 1


def cmd_token(client) -> int:
    token = client.get_valid_access_token()
    if token is None:
        print("No valid access token. Run `spotctl login`.", file=sys.stderr)
        return 1
    print(token)
    return 0


COMMANDS = {
    "login": cmd_login,
    "logout": cmd_logout,
    "status": cmd_status,
    "token": cmd_token,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spotctl",
        description="Manage Spotify authorization for spotctl",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  spotctl login                      Authorize with Spotify
  spotctl status                     Check whether a token is available
  spotctl token                      Print an access token for scripts
  SPOTCTL_AUTH_MODE=managed spotctl login
                                     Log in through the managed backend
""",
    )
    parser.add_argument("command", choices=sorted(COMMANDS))
    parser.add_argument(
        "--mode",
        choices=["self_managed", "managed"],
        default=None,
        help="Override SPOTCTL_AUTH_MODE for this invocation",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        force=True,
    )

    client_config = ClientConfig.from_env()
    if args.mode:
        client_config = dataclasses.replace(client_config, auth_mode=args.mode)

    try:
        client = build_auth_client(client_config)
    except SpotifyAuthError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    return COMMANDS[args.command](client)


if __name__ == "__main__":
    sys.exit(main())
