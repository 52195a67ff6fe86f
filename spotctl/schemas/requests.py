"""
Request validation schemas using Pydantic.

Provides type-safe validation for the managed backend's auth endpoints.
"""

from typing import Optional
from pydantic import BaseModel, Field, field_validator


class SessionTokenRequest(BaseModel):
    """Body of /auth/verify and /auth/logout."""

    model_config = {"extra": "ignore"}

    sessionToken: str = Field(
        ..., description="Session artifact issued by /auth/callback"
    )

    @field_validator("sessionToken")
    @classmethod
    def validate_session_token(cls, v: str) -> str:
        """Ensure the session token is not blank."""
        if not v or not v.strip():
            raise ValueError("sessionToken cannot be empty")
        return v.strip()


class CallbackQueryParams(BaseModel):
    """Query parameters of Spotify's redirect to /auth/callback."""

    model_config = {"extra": "ignore"}

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    def as_params(self) -> dict:
        """Return the non-empty parameters as a plain dict."""
        return {k: v for k, v in self.model_dump().items() if v}
