"""
Pydantic schemas for request/response validation.

This module provides type-safe validation for the backend's auth endpoints.
"""

from pydantic import ValidationError

from .requests import (
    SessionTokenRequest,
    CallbackQueryParams,
)

__all__ = [
    # Exceptions
    "ValidationError",
    # Request schemas
    "SessionTokenRequest",
    "CallbackQueryParams",
]
