"""
In-memory stand-in for a PostgreSQL server.

Implements the slice of the asyncpg connection API the service uses and
understands only the statements the repositories issue.
"""

from __future__ import annotations

import asyncio
from typing import Any

import asyncpg
from fastapi import FastAPI

from core.config import PoolSettings, Settings
from core.db import ConnectionPool
from main import create_app


class FakeStore:
    def __init__(self) -> None:
        self.users: list[dict[str, Any]] = []
        self.posts: list[dict[str, Any]] = []
        self._next_user_id = 1

        self.connects = 0
        self.open_connections = 0
        self.max_open_connections = 0
        self.active_queries = 0
        self.max_active_queries = 0
        self.queries: list[tuple[str, tuple]] = []

        self.unreachable = False
        self.query_delay = 0.0
        self.connect_delay = 0.0
        self.fail_next: BaseException | None = None

    async def connect(self) -> "FakeConnection":
        if self.unreachable:
            raise ConnectionRefusedError("connection refused")
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        self.connects += 1
        self.open_connections += 1
        self.max_open_connections = max(self.max_open_connections, self.open_connections)
        return FakeConnection(self)

    def add_post(self, title: str) -> dict[str, Any]:
        row = {"id": len(self.posts) + 1, "title": title}
        self.posts.append(row)
        return row

    def _insert_user(self, name: str, email: str | None) -> dict[str, Any]:
        if email is not None and any(u["email"] == email for u in self.users):
            raise asyncpg.exceptions.UniqueViolationError(
                'duplicate key value violates unique constraint "users_email_key"'
            )
        row = {"id": self._next_user_id, "name": name, "email": email}
        self._next_user_id += 1
        self.users.append(row)
        return row

    def run(self, sql: str, args: tuple) -> list[dict[str, Any]]:
        statement = " ".join(sql.split())
        if statement == "SELECT id, name, email FROM users":
            return [dict(u) for u in self.users]
        if statement == "SELECT id, title FROM posts":
            return [dict(p) for p in self.posts]
        if statement.startswith("INSERT INTO users (name, email) VALUES ($1, $2)"):
            name, email = args
            return [dict(self._insert_user(name, email))]
        if statement == "SELECT 1":
            return [{"?column?": 1}]
        raise asyncpg.exceptions.PostgresSyntaxError(f"fake store cannot run: {statement}")


class FakeConnection:
    def __init__(self, store: FakeStore) -> None:
        self._store = store
        self._closed = False

    def is_closed(self) -> bool:
        return self._closed

    def terminate(self) -> None:
        self._mark_closed()

    async def close(self) -> None:
        self._mark_closed()

    def _mark_closed(self) -> None:
        if not self._closed:
            self._closed = True
            self._store.open_connections -= 1

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        return await self._run(sql, args)

    async def fetchrow(self, sql: str, *args: Any) -> dict[str, Any] | None:
        rows = await self._run(sql, args)
        return rows[0] if rows else None

    async def _run(self, sql: str, args: tuple) -> list[dict[str, Any]]:
        if self._closed:
            raise asyncpg.exceptions.ConnectionDoesNotExistError("connection is closed")

        store = self._store
        store.queries.append((sql, args))
        store.active_queries += 1
        store.max_active_queries = max(store.max_active_queries, store.active_queries)
        try:
            if store.query_delay:
                await asyncio.sleep(store.query_delay)
            if store.fail_next is not None:
                exc, store.fail_next = store.fail_next, None
                raise exc
            return store.run(sql, args)
        finally:
            store.active_queries -= 1


def build_app(store: FakeStore, **pool_overrides: Any) -> FastAPI:
    """App wired to `store`; defaults to a lazily filled pool of two."""
    pool_settings = PoolSettings(**{"min_size": 0, "max_size": 2, "acquire_timeout": 1.0, **pool_overrides})
    pool = ConnectionPool(pool_settings, connect=store.connect)
    return create_app(Settings(pool=pool_settings), pool=pool)
