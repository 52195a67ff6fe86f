"""
One-shot local HTTP listener for the OAuth redirect.

Binds the host/port of the configured redirect URI for the duration of a
single authorization attempt, waits for the provider's redirect, and
always releases the socket on exit (success, failure, timeout or
cancellation). Requests for other paths, such as the browser's
/favicon.ico probe, are answered with 404 and ignored.
"""

import logging
import socket
import threading
import time
from typing import Callable, Dict, Optional
from urllib.parse import urlparse

from markupsafe import escape
from werkzeug.serving import get_sockaddr, make_server, select_address_family
from werkzeug.wrappers import Request, Response

from spotctl.spotify.exceptions import (
    AuthCancelledError,
    AuthFlowError,
    AuthTimeoutError,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5  # seconds

_PAGE = """<!doctype html>
<html>
<head><title>Spotify Authentication</title></head>
<body style="font-family: Arial; text-align: center; padding: 50px;">
<h1>{heading}</h1>
<p>{message}</p>
</body>
</html>"""


class ListenerBindError(AuthFlowError):
    """Raised when the redirect port cannot be bound."""
    pass


def _page(heading: str, message: str) -> str:
    return _PAGE.format(heading=escape(heading), message=escape(message))


class CallbackListener:
    """
    Scoped listener returning the authorization code or a typed failure.

    ``evaluate`` receives the callback's query parameters and returns the
    authorization code, or raises an AuthFlowError to reject it.

    Usage::

        with CallbackListener(redirect_uri, evaluate) as listener:
            open_browser(auth_url)
            code = listener.wait(timeout=300, cancel_event=event)
    """

    def __init__(
        self,
        redirect_uri: str,
        evaluate: Callable[[Dict[str, str]], str],
        poll_interval: float = POLL_INTERVAL,
    ):
        parsed = urlparse(redirect_uri)
        self._host = parsed.hostname or "localhost"
        self._port = parsed.port or (443 if parsed.scheme == "https" else 80)
        self._path = parsed.path or "/"
        self._evaluate = evaluate
        self._poll_interval = poll_interval
        self._server = None
        self._code: Optional[str] = None
        self._error: Optional[AuthFlowError] = None
        self._done = threading.Event()

    @property
    def port(self) -> int:
        """Bound port (useful when the redirect URI asks for port 0)."""
        if self._server is None:
            return self._port
        return self._server.port

    @property
    def is_bound(self) -> bool:
        return self._server is not None

    def __enter__(self) -> "CallbackListener":
        # Bind here so a busy port raises instead of exiting the process.
        family = select_address_family(self._host, self._port)
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(get_sockaddr(self._host, self._port, family))
            sock.listen(5)
            self._server = make_server(
                self._host, self._port, self._app, fd=sock.fileno()
            )
        except OSError as e:
            raise ListenerBindError(
                f"Could not listen on {self._host}:{self._port}: {e}"
            )
        finally:
            sock.close()
        logger.info(
            "Waiting for OAuth callback on %s:%s%s",
            self._host, self.port, self._path,
        )
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Release the socket. Safe to call more than once."""
        if self._server is not None:
            self._server.server_close()
            self._server = None
            logger.debug("OAuth callback listener closed")

    def wait(
        self,
        timeout: float,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """
        Block until the callback arrives, the deadline passes or the
        caller cancels.

        Returns:
            The authorization code.

        Raises:
            AuthTimeoutError: If no callback arrived in time.
            AuthCancelledError: If ``cancel_event`` was set.
            AuthFlowError: If the callback was rejected by ``evaluate``.
        """
        if self._server is None:
            raise RuntimeError("CallbackListener used outside its context")

        deadline = time.monotonic() + timeout
        while not self._done.is_set():
            if cancel_event is not None and cancel_event.is_set():
                raise AuthCancelledError("Authorization cancelled")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise AuthTimeoutError(
                    f"No authorization callback within {timeout:.0f} seconds"
                )
            self._server.timeout = min(self._poll_interval, remaining)
            self._server.handle_request()

        if self._error is not None:
            raise self._error
        return self._code

    @Request.application
    def _app(self, request: Request) -> Response:
        if request.path != self._path:
            return Response("Not found", status=404)

        if self._done.is_set():
            return Response(
                _page("Already handled", "You can close this window."),
                status=409,
                mimetype="text/html",
            )

        params = request.args.to_dict()
        try:
            self._code = self._evaluate(params)
        except AuthFlowError as e:
            self._error = e
            self._done.set()
            logger.warning("OAuth callback rejected: %s", e)
            return Response(
                _page("Authentication failed", str(e)),
                status=400,
                mimetype="text/html",
            )

        self._done.set()
        return Response(
            _page(
                "Authentication successful!",
                "You can close this window and return to your editor.",
            ),
            status=200,
            mimetype="text/html",
        )
