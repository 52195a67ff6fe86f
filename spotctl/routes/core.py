"""
Liveness endpoint.
"""

import time

from flask import jsonify

from spotctl.routes import main


@main.route("/health")
def health():
    """Report liveness and whether the credential store answers."""
    from spotctl import get_redis_client, is_store_available

    return jsonify({
        "status": "ok" if is_store_available() else "degraded",
        "store": "memory" if get_redis_client() is None else "redis",
        "timestamp": time.time(),
    })
