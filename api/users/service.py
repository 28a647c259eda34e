"""
User business logic.
"""

from __future__ import annotations

import logging

from core import db
from core.errors import ValidationError

from . import repository, schemas

logger = logging.getLogger(__name__)


def to_user(row: dict) -> schemas.User:
    email = row.get("email")
    return schemas.User(
        id=int(row["id"]),
        name=str(row["name"]),
        email=str(email) if email is not None else None,
    )


def validate_new_user(payload: schemas.CreateUserRequest) -> None:
    if not payload.name.strip():
        raise ValidationError("name must not be empty.")
    email = payload.email.strip()
    if not email:
        raise ValidationError("email must not be empty.")
    local, _, domain = email.partition("@")
    if not local or not domain:
        raise ValidationError("email must look like local@domain.")


async def list_users(pool: db.ConnectionPool) -> list[schemas.User]:
    rows = await repository.list_users(pool)
    return [to_user(row) for row in rows]


async def create_user(pool: db.ConnectionPool, payload: schemas.CreateUserRequest) -> schemas.User:
    # Reject bad input before touching the pool.
    validate_new_user(payload)

    row = await repository.create_user(pool, name=payload.name, email=payload.email)
    user = to_user(row)
    logger.info("user_created user_id=%s", user.id)
    return user
