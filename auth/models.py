"""
Request / response schemas for the auth routes.
"""

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class AuthResponse(BaseModel):
    user_id: str
    email: str
    full_name: str | None = None
    role: str
    organization_id: str | None = None
    token: str
