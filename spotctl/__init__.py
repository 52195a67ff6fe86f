import os
import atexit
import logging
from typing import Optional
from flask import Flask
import redis
from config import config, validate_required_env_vars

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Global Redis client for credential storage (initialized in create_app)
_redis_client: Optional[redis.Redis] = None


def _create_redis_client(redis_url: str) -> redis.Redis:
    """
    Create a Redis client from URL.

    Args:
        redis_url: Redis connection URL.

    Returns:
        Redis client instance.

    Raises:
        redis.ConnectionError: If connection fails.
    """
    return redis.from_url(redis_url, decode_responses=False)


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get the global Redis client.

    Returns:
        Redis client if configured, None otherwise.
    """
    return _redis_client


def is_store_available() -> bool:
    """
    Check if the backing credential store is reachable.

    The in-memory store is always available; Redis is pinged.
    """
    if _redis_client is None:
        return True
    try:
        return bool(_redis_client.ping())
    except redis.RedisError:
        return False


def _create_base_store(app):
    """Redis-backed store when REDIS_URL works, in-memory otherwise."""
    from spotctl.services import MemoryCredentialStore, RedisCredentialStore

    global _redis_client
    redis_url = app.config.get("REDIS_URL")
    if redis_url:
        try:
            redis_client = _create_redis_client(redis_url)
            # Test the connection
            redis_client.ping()
            _redis_client = redis_client
            logger.info(
                "Redis credential storage configured: %s",
                redis_url.split("@")[-1],
            )
            return RedisCredentialStore(
                redis_client,
                key_prefix=app.config.get("REDIS_KEY_PREFIX", "spotctl:"),
            )
        except redis.ConnectionError as e:
            logger.warning(
                "Redis connection failed: %s. Falling back to in-memory storage.",
                e,
            )
    else:
        logger.warning("REDIS_URL not configured. Using in-memory storage.")

    _redis_client = None
    return MemoryCredentialStore()


def _create_broker(app):
    """Assemble the SessionBroker from app config."""
    from spotctl.services import (
        ArtifactSigner,
        EncryptedCredentialStore,
        SessionBroker,
        StateRegistry,
        TokenCipher,
    )
    from spotctl.spotify import SpotifyCredentials, TokenExchanger

    credentials = SpotifyCredentials.from_flask_config(app.config)
    exchanger = TokenExchanger(
        credentials,
        timeout=app.config.get("HTTP_TIMEOUT_SECONDS", 15),
    )

    base_store = _create_base_store(app)
    states = StateRegistry(
        base_store, ttl=app.config.get("STATE_TTL_SECONDS", 600)
    )
    mirror = EncryptedCredentialStore(
        base_store, TokenCipher(str(app.config["SECRET_KEY"]))
    )

    jwt_secret = app.config.get("JWT_SECRET")
    if not jwt_secret:
        logger.warning("JWT_SECRET not set. Signing artifacts with SECRET_KEY.")
        jwt_secret = str(app.config["SECRET_KEY"])
    signer = ArtifactSigner(
        jwt_secret,
        lifetime_days=app.config.get("SESSION_ARTIFACT_LIFETIME_DAYS", 30),
    )

    return SessionBroker(
        exchanger,
        mirror,
        states,
        signer,
        refresh_skew=app.config.get("REFRESH_SKEW_SECONDS", 300),
    )


def create_app(config_name=None):
    """Create and configure the managed auth backend."""
    if config_name is None:
        config_name = os.getenv("FLASK_ENV", "production")

    # Ensure config_name is a string
    if not isinstance(config_name, str):
        config_name = "production"  # Default to production if not a string

    logger.info("Creating app with config: %s", config_name)

    # Validate required environment variables
    try:
        validate_required_env_vars()
        logger.info("Environment validation passed")
    except ValueError as e:
        logger.error("Environment validation failed: %s", str(e))
        if config_name == "production":
            raise  # Fail fast in production
        else:
            logger.warning(
                "Continuing in %s mode with missing environment variables",
                config_name,
            )

    app = Flask(__name__)

    # Load config
    app.config.from_object(config[config_name])

    logger.info("BACKEND_URL: %s", app.config.get("BACKEND_URL"))

    app.extensions["spotctl_broker"] = _create_broker(app)

    # Register blueprints
    from spotctl.routes import main as main_blueprint

    app.register_blueprint(main_blueprint)

    # Register global error handlers
    from spotctl.error_handlers import register_error_handlers

    register_error_handlers(app)

    # Initialize APScheduler (after the broker exists)
    if app.config.get("SCHEDULER_ENABLED", True):
        from spotctl.scheduler import init_scheduler

        scheduler = init_scheduler(app)
        if scheduler:
            app.extensions["scheduler"] = scheduler

            # Register scheduler shutdown on interpreter exit
            @atexit.register
            def shutdown():
                from spotctl.scheduler import shutdown_scheduler

                shutdown_scheduler()

    return app
