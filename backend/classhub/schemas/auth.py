"""Authentication schemas."""

from pydantic import ConfigDict, Field

from classhub.schemas.base import BaseSchema
from classhub.schemas.users import Identity


class TokenResponse(BaseSchema):
    """Response schema for successful authentication."""

    # OAuth-style field names stay snake_case; the nested user keeps its aliases
    model_config = ConfigDict(alias_generator=None)

    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Token expiry in seconds")
    user: Identity
