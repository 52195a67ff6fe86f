"""
Flask routes for the spotctl managed auth backend.

Routes only translate HTTP to SessionBroker calls and back; token
handling lives in spotctl.services. Every route module registers on
the single `main` Blueprint defined here.
"""

import logging
from typing import Optional, Tuple, Type, TypeVar

from flask import Blueprint, current_app, jsonify, request
from pydantic import BaseModel, ValidationError

from spotctl.error_handlers import json_error_response
from spotctl.services import SessionBroker

logger = logging.getLogger(__name__)
main = Blueprint("main", __name__)

BROKER_EXTENSION = "spotctl_broker"

SchemaT = TypeVar("SchemaT", bound=BaseModel)


# =============================================================================
# Helpers shared by the route modules
# =============================================================================


def get_broker() -> SessionBroker:
    """The SessionBroker that create_app() attached to this app."""
    return current_app.extensions[BROKER_EXTENSION]


def json_success(message: str, **extra):
    return jsonify({
        "success": True,
        "message": message,
        "category": "success",
        **extra,
    })


def validate_json(
    schema_class: Type[SchemaT],
) -> Tuple[Optional[SchemaT], Optional[tuple]]:
    """
    Validate the request's JSON object body.

    Returns ``(model, None)``, or ``(None, error_response)`` when the
    body is not a JSON object or fails the schema.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return None, json_error_response("Request body must be JSON.", 400)

    try:
        return schema_class.model_validate(data), None
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        logger.info("Rejected %s body: %s", request.path, problems)
        return None, json_error_response(
            f"Validation error: {'; '.join(problems) or 'invalid input'}",
            400,
        )


# Route modules import `main` from here, so they load last.
from spotctl.routes import (  # noqa: E402, F401
    core,
    auth,
)
