from __future__ import annotations

from core import db

from . import repository, schemas


def to_post(row: dict) -> schemas.Post:
    return schemas.Post(id=int(row["id"]), title=str(row["title"]))


async def list_posts(pool: db.ConnectionPool) -> list[schemas.Post]:
    rows = await repository.list_posts(pool)
    return [to_post(row) for row in rows]
