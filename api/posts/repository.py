"""
Post persistence (raw SQL).
"""

from __future__ import annotations

from core import db


async def list_posts(pool: db.ConnectionPool) -> list[dict]:
    return await db.fetch_all(
        pool,
        """
        SELECT id, title
        FROM posts
        """,
    )
