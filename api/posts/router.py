"""
Post API endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from core import db

from . import schemas, service

router = APIRouter()


@router.get("/posts", response_model=list[schemas.Post])
async def list_posts(
    pool: db.ConnectionPool = Depends(db.get_pool),
) -> list[schemas.Post]:
    return await service.list_posts(pool)
