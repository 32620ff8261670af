from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LoginIn(BaseModel):
    """Admin console login. Only the configured administrative pair is accepted."""
    model_config = ConfigDict(extra='forbid')

    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1, max_length=128)

    @field_validator('password')
    @classmethod
    def validate_password_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Password cannot be empty')
        return v


class TokenOut(BaseModel):
    model_config = ConfigDict(extra='forbid')

    access_token: str
    token_type: str = "bearer"
