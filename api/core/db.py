"""
Async database access helpers (raw SQL) using asyncpg.

`ConnectionPool` owns every store connection. `main.create_app` builds one
instance, stores it on `app.state.pool` and opens/closes it from the app
lifespan; handlers receive it through the `get_pool` dependency.

SQL parameter style:
- asyncpg uses positional placeholders: $1, $2, $3, ...
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Iterator

import asyncpg
from fastapi import Request

from .config import POLICY_FAIL_FAST, PoolSettings
from .errors import ConflictError, ConnectionFailed, PoolExhausted, StoreError

logger = logging.getLogger(__name__)

ConnectFn = Callable[[], Awaitable[Any]]

_CLOSE_TIMEOUT_S = 5.0

# After one of these the connection's protocol state is unknown.
_FATAL_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    OSError,
    asyncio.TimeoutError,
    asyncio.CancelledError,
)

_STORE_FAULTS: tuple[type[BaseException], ...] = (
    asyncpg.exceptions.PostgresError,
    asyncpg.exceptions.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)

_STATE_NEW = "new"
_STATE_OPEN = "open"
_STATE_CLOSED = "closed"


class ConnectionPool:
    """
    Bounded pool of asyncpg connections.

    At most `max_size` connections are open at any time. A slot is taken per
    lease; under the `wait` policy callers queue for up to `acquire_timeout`
    seconds, under `fail_fast` they get `PoolExhausted` immediately.
    """

    def __init__(self, settings: PoolSettings, connect: ConnectFn | None = None) -> None:
        self._settings = settings
        self._connect = connect or self._connect_asyncpg
        self._slots = asyncio.Semaphore(settings.max_size)
        self._idle: list[Any] = []
        self._leased: dict[int, Any] = {}
        self._open_count = 0
        self._state = _STATE_NEW
        self._replacements: set[asyncio.Task] = set()

    @property
    def settings(self) -> PoolSettings:
        return self._settings

    @property
    def is_open(self) -> bool:
        return self._state == _STATE_OPEN

    async def open(self) -> None:
        if self._state == _STATE_OPEN:
            return None
        if self._state == _STATE_CLOSED:
            raise RuntimeError("A closed connection pool cannot be reopened.")

        self._state = _STATE_OPEN
        for _ in range(self._settings.min_size):
            try:
                conn = await self._open_connection()
            except ConnectionFailed:
                # Startup continues; connections are opened on demand later.
                logger.warning(
                    "pool_warmup_failed host=%s port=%s database=%s",
                    self._settings.host,
                    self._settings.port,
                    self._settings.database,
                    exc_info=True,
                )
                break
            self._idle.append(conn)

        logger.info(
            "pool_opened max_size=%s idle=%s policy=%s",
            self._settings.max_size,
            len(self._idle),
            self._settings.policy,
        )

    async def close(self) -> None:
        if self._state != _STATE_OPEN:
            self._state = _STATE_CLOSED
            return None
        self._state = _STATE_CLOSED

        pending = list(self._replacements)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        idle, self._idle = self._idle, []
        for conn in idle:
            await self._close_connection(conn)

        # Leased connections are discarded as their holders release them.
        logger.info("pool_closed closed_idle=%s still_leased=%s", len(idle), len(self._leased))

    async def acquire(self) -> Any:
        """
        Lease a connection. Raises `PoolExhausted` or `ConnectionFailed`.
        """
        if self._state != _STATE_OPEN:
            raise ConnectionFailed("Connection pool is not open.")

        await self._take_slot()
        try:
            if self._state != _STATE_OPEN:
                raise ConnectionFailed("Connection pool closed while waiting for a connection.")
            conn = await self._checkout()
        except BaseException:
            self._slots.release()
            raise
        self._leased[id(conn)] = conn
        return conn

    def release(self, conn: Any, *, discard: bool = False) -> None:
        """
        Give a leased connection back. Broken or discarded connections are
        terminated and a replacement is scheduled.
        """
        if self._leased.pop(id(conn), None) is None:
            raise ValueError("Connection is not leased from this pool.")

        try:
            if discard or self._state != _STATE_OPEN or conn.is_closed():
                self._discard(conn)
                discarded = True
            else:
                self._idle.append(conn)
                discarded = False
        finally:
            self._slots.release()

        if discarded and self._state == _STATE_OPEN:
            logger.info("pool_connection_discarded open=%s", self._open_count)
            self._schedule_replacement()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[Any]:
        conn = await self.acquire()
        discard = False
        try:
            yield conn
        except _FATAL_ERRORS:
            discard = True
            raise
        finally:
            self.release(conn, discard=discard)

    def stats(self) -> dict[str, Any]:
        return {
            "max_size": self._settings.max_size,
            "open": self._open_count,
            "idle": len(self._idle),
            "in_use": len(self._leased),
            "policy": self._settings.policy,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _take_slot(self) -> None:
        if self._settings.policy == POLICY_FAIL_FAST:
            if self._slots.locked():
                raise PoolExhausted(f"All {self._settings.max_size} connections are in use.")
            # Does not suspend: the semaphore is known to be free.
            await self._slots.acquire()
            return None

        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self._settings.acquire_timeout)
        except asyncio.TimeoutError as exc:
            raise PoolExhausted(
                f"No connection became available within {self._settings.acquire_timeout}s."
            ) from exc

    async def _checkout(self) -> Any:
        while True:
            while self._idle:
                conn = self._idle.pop()
                if not conn.is_closed():
                    return conn
                self._open_count -= 1
                logger.info("pool_dropped_closed_idle_connection open=%s", self._open_count)

            # A refill in flight already counts toward max_size; take its connection.
            pending = [task for task in self._replacements if not task.done()]
            if not pending:
                return await self._open_connection()
            await asyncio.wait(pending)
            if self._state != _STATE_OPEN:
                raise ConnectionFailed("Connection pool closed while waiting for a connection.")

    async def _open_connection(self) -> Any:
        self._open_count += 1
        try:
            return await self._connect()
        except Exception as exc:
            self._open_count -= 1
            raise ConnectionFailed("Could not connect to the database.") from exc
        except BaseException:
            self._open_count -= 1
            raise

    def _discard(self, conn: Any) -> None:
        self._open_count -= 1
        try:
            conn.terminate()
        except Exception:
            logger.debug("pool_terminate_failed", exc_info=True)

    async def _close_connection(self, conn: Any) -> None:
        self._open_count -= 1
        try:
            await asyncio.wait_for(conn.close(), timeout=_CLOSE_TIMEOUT_S)
        except Exception:
            logger.debug("pool_graceful_close_failed", exc_info=True)
            conn.terminate()

    def _schedule_replacement(self) -> None:
        if self._open_count >= self._settings.min_size:
            return None
        task = asyncio.get_running_loop().create_task(self._replace())
        self._replacements.add(task)
        task.add_done_callback(self._replacements.discard)

    async def _replace(self) -> None:
        # Refills never take a request slot; they share the max_size ceiling
        # through _open_count, and _checkout waits for them instead of opening.
        if self._state != _STATE_OPEN or self._idle or self._open_count >= self._settings.max_size:
            return None

        try:
            conn = await self._open_connection()
        except ConnectionFailed:
            logger.warning("pool_replacement_failed host=%s", self._settings.host, exc_info=True)
            return None

        if self._state == _STATE_OPEN:
            self._idle.append(conn)
        else:
            self._discard(conn)

    async def _connect_asyncpg(self) -> asyncpg.Connection:
        s = self._settings
        return await asyncpg.connect(
            host=s.host,
            port=s.port,
            user=s.user,
            password=s.password,
            database=s.database,
            timeout=s.connect_timeout,
            command_timeout=s.command_timeout,
        )


async def get_pool(request: Request) -> ConnectionPool:
    pool = getattr(request.app.state, "pool", None)
    if pool is None:
        raise ConnectionFailed("DB pool is not initialized. Build the app with create_app().")
    return pool


@contextmanager
def _store_errors() -> Iterator[None]:
    try:
        yield
    except asyncpg.exceptions.UniqueViolationError as exc:
        constraint = getattr(exc, "constraint_name", None) or "unknown"
        raise ConflictError(f"Unique constraint violated: {constraint}.") from exc
    except _STORE_FAULTS as exc:
        raise StoreError(f"{type(exc).__name__}: {exc}") from exc


def _record_to_dict(record: Any) -> dict[str, Any]:
    return dict(record)


async def fetch_one(pool: ConnectionPool, sql: str, *args: Any) -> dict[str, Any] | None:
    """
    Run a query and return a single row as a dict (or None).
    """
    with _store_errors():
        async with pool.connection() as conn:
            row = await conn.fetchrow(sql, *args)
    return _record_to_dict(row) if row is not None else None


async def fetch_all(pool: ConnectionPool, sql: str, *args: Any) -> list[dict[str, Any]]:
    """
    Run a query and return all rows as a list of dicts.
    """
    with _store_errors():
        async with pool.connection() as conn:
            rows = await conn.fetch(sql, *args)
    return [_record_to_dict(r) for r in rows]
