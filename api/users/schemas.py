"""
User API schemas (request/response models).
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class CreateUserRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)


class User(BaseModel):
    id: int
    name: str
    email: str | None = None
