"""
Managed authentication routes.

The desktop client calls /auth/start, the user's browser is sent through
Spotify to /auth/callback, and the session artifact shown there is later
exchanged for access tokens through /auth/verify.
"""

import logging

from flask import jsonify, render_template, request

from spotctl.routes import main, get_broker, json_success, validate_json
from spotctl.schemas import CallbackQueryParams, SessionTokenRequest
from spotctl.spotify import AuthFlowError, ExchangeError

logger = logging.getLogger(__name__)


@main.route("/auth/start")
def auth_start():
    """Issue a state nonce and return the Spotify authorize URL."""
    start = get_broker().start()
    return jsonify({"authUrl": start.auth_url, "state": start.state})


@main.route("/auth/callback")
def auth_callback():
    """Handle Spotify's redirect and show the session token to copy."""
    params = CallbackQueryParams(**request.args.to_dict()).as_params()
    logger.debug("Callback received with params: %s", sorted(params))

    try:
        artifact = get_broker().complete_callback(params)
    except AuthFlowError as e:
        logger.warning("Managed callback rejected: %s", e)
        return (
            render_template("callback_error.html", message=str(e)),
            400,
        )
    except ExchangeError as e:
        logger.error("Managed code exchange failed: %s", e)
        return (
            render_template(
                "callback_error.html",
                message="Could not complete sign-in with Spotify. "
                        "Please try again.",
            ),
            502,
        )

    return render_template("callback_success.html", session_token=artifact)


@main.route("/auth/verify", methods=["POST"])
def auth_verify():
    """Return the current access token for a session artifact."""
    parsed, err = validate_json(SessionTokenRequest)
    if err:
        return err

    # ArtifactError, SessionNotFoundError and ExchangeError are mapped
    # by the global error handlers.
    token = get_broker().verify(parsed.sessionToken)
    return jsonify({
        "access_token": token.access_token,
        "expires_at": token.expires_at,
    })


@main.route("/auth/logout", methods=["POST"])
def auth_logout():
    """Forget a managed session. Always reports success."""
    data = request.get_json(silent=True) or {}
    session_token = data.get("sessionToken") if isinstance(data, dict) else None

    try:
        get_broker().logout(session_token)
    except Exception as e:
        logger.warning("Logout cleanup failed: %s. Logout continues.", e)

    return json_success("Logged out.")
