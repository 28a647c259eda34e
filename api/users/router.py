"""
User API endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from core import db

from . import schemas, service

router = APIRouter()


@router.get("/users", response_model=list[schemas.User])
async def list_users(
    pool: db.ConnectionPool = Depends(db.get_pool),
) -> list[schemas.User]:
    """
    List every user. Order is whatever the store returns.
    """
    return await service.list_users(pool)


@router.post("/users", response_model=schemas.User)
async def create_user(
    request: schemas.CreateUserRequest,
    pool: db.ConnectionPool = Depends(db.get_pool),
) -> schemas.User:
    return await service.create_user(pool, request)
