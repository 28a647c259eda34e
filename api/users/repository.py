"""
User persistence helpers.
"""

from __future__ import annotations

from core import db
from core.errors import StoreError


async def list_users(pool: db.ConnectionPool) -> list[dict]:
    # No ORDER BY: row order is whatever the store returns.
    return await db.fetch_all(
        pool,
        """
        SELECT id, name, email
        FROM users
        """,
    )


async def create_user(pool: db.ConnectionPool, *, name: str, email: str) -> dict:
    row = await db.fetch_one(
        pool,
        """
        INSERT INTO users (name, email)
        VALUES ($1, $2)
        RETURNING id, name, email
        """,
        name,
        email,
    )
    if row is None:
        raise StoreError("Insert into users returned no row.")
    return row
