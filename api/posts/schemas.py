"""
Pydantic schemas for post endpoints.
"""

from __future__ import annotations

from pydantic import BaseModel


class Post(BaseModel):
    id: int
    title: str
