"""
Global Flask error handlers.

Provides consistent error responses across all endpoints by catching
service-layer exceptions and Pydantic validation errors.
"""

import logging
from flask import jsonify
from pydantic import ValidationError

from spotctl.services import (
    ArtifactError,
    CredentialStoreError,
    TokenEncryptionError,
)
from spotctl.spotify import (
    AuthFlowError,
    ConfigError,
    ExchangeError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)


def json_error_response(message: str, status_code: int, category: str = "error"):
    """Create a standardized JSON error response."""
    return (
        jsonify({"success": False, "message": message, "category": category}),
        status_code,
    )


def register_error_handlers(app):
    """
    Register global error handlers with the Flask app.

    Args:
        app: The Flask application instance.
    """

    # =========================================================================
    # Validation Errors (400)
    # =========================================================================

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """Handle Pydantic validation errors."""
        errors_list = []
        for err in error.errors():
            field = ".".join(str(loc) for loc in err["loc"])
            msg = err["msg"]
            errors_list.append(f"{field}: {msg}")

        message = "; ".join(errors_list) if errors_list else "Validation failed"
        logger.warning(f"Validation error: {message}")
        return json_error_response(message, 400)

    @app.errorhandler(AuthFlowError)
    def handle_auth_flow_error(error: AuthFlowError):
        """Handle rejected authorization callbacks."""
        logger.warning(f"Authorization flow error: {error}")
        return json_error_response(str(error), 400)

    # =========================================================================
    # Authentication Errors (401)
    # =========================================================================

    @app.errorhandler(ArtifactError)
    def handle_artifact_error(error: ArtifactError):
        """Handle forged, malformed or expired session artifacts."""
        logger.warning(f"Artifact error: {error}")
        return json_error_response("Invalid session token.", 401)

    @app.errorhandler(SessionNotFoundError)
    def handle_session_not_found(error: SessionNotFoundError):
        """Handle sessions the backend no longer knows."""
        logger.info(f"Session not found: {error}")
        return json_error_response("Session not found. Please log in again.", 401)

    # =========================================================================
    # Upstream Errors (502)
    # =========================================================================

    @app.errorhandler(ExchangeError)
    def handle_exchange_error(error: ExchangeError):
        """Handle failed exchanges with Spotify."""
        logger.error(f"Exchange error: {error}")
        return json_error_response("Token exchange with Spotify failed.", 502)

    # =========================================================================
    # Server Errors (500)
    # =========================================================================

    @app.errorhandler(ConfigError)
    def handle_config_error(error: ConfigError):
        """Handle missing server configuration."""
        logger.error(f"Configuration error: {error}")
        return json_error_response("Server is not configured correctly.", 500)

    @app.errorhandler(CredentialStoreError)
    def handle_store_error(error: CredentialStoreError):
        """Handle session storage failures."""
        logger.error(f"Credential store error: {error}")
        return json_error_response("Session storage unavailable.", 500)

    @app.errorhandler(TokenEncryptionError)
    def handle_encryption_error(error: TokenEncryptionError):
        """Handle mirror entries that cannot be encrypted."""
        logger.error(f"Token encryption error: {error}")
        return json_error_response("Session storage error.", 500)

    # =========================================================================
    # HTTP Error Codes
    # =========================================================================

    @app.errorhandler(400)
    def handle_bad_request(error):
        """Handle 400 Bad Request."""
        return json_error_response("Bad request.", 400)

    @app.errorhandler(404)
    def handle_not_found(error):
        """Handle 404 Not Found."""
        return json_error_response("Resource not found.", 404)

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        """Handle 405 Method Not Allowed."""
        return json_error_response("Method not allowed.", 405)

    @app.errorhandler(500)
    def handle_internal_error(error):
        """Handle 500 Internal Server Error."""
        logger.error(f"Internal server error: {error}", exc_info=True)
        return json_error_response("An unexpected error occurred.", 500)

    logger.info("Global error handlers registered")
