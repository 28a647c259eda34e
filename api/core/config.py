"""
Runtime settings read from the environment.

Everything the service needs to reach the store and serve HTTP lives here so
the rest of the code receives a plain `Settings` object instead of reading
`os.environ` itself.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit, urlunsplit

from .errors import ConfigError

POLICY_WAIT = "wait"
POLICY_FAIL_FAST = "fail_fast"
POLICIES = (POLICY_WAIT, POLICY_FAIL_FAST)


@dataclass(frozen=True)
class PoolSettings:
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str | None = field(default=None, repr=False)
    database: str = "postgres"
    min_size: int = 1
    max_size: int = 10
    acquire_timeout: float = 10.0
    policy: str = POLICY_WAIT
    connect_timeout: float = 10.0
    command_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.policy not in POLICIES:
            raise ConfigError(f"Unknown pool policy {self.policy!r}; expected one of {POLICIES}.")
        if self.max_size < 1:
            raise ConfigError("Pool max size must be at least 1.")
        if self.min_size < 0 or self.min_size > self.max_size:
            raise ConfigError("Pool min size must be between 0 and max size.")
        if self.acquire_timeout <= 0:
            raise ConfigError("Pool acquire timeout must be positive.")


@dataclass(frozen=True)
class Settings:
    pool: PoolSettings = field(default_factory=PoolSettings)
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"


def _env_str(env: Mapping[str, str], name: str, default: str) -> str:
    return (env.get(name) or "").strip() or default


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _sanitize_database_url(url: str) -> str:
    # libpq's sslmode is not understood by asyncpg.connect keyword arguments.
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = [(k, v) for (k, v) in parse_qsl(parts.query, keep_blank_values=True) if k != "sslmode"]
    query = urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def _database_url_parts(url: str) -> dict[str, object]:
    parts = urlsplit(_sanitize_database_url(url))
    if parts.scheme not in ("postgres", "postgresql"):
        raise ConfigError("DATABASE_URL must use the postgres:// or postgresql:// scheme.")

    found: dict[str, object] = {}
    if parts.hostname:
        found["host"] = parts.hostname
    try:
        port = parts.port
    except ValueError as exc:
        raise ConfigError("DATABASE_URL has an invalid port.") from exc
    if port:
        found["port"] = port
    if parts.username:
        found["user"] = unquote(parts.username)
    if parts.password:
        found["password"] = unquote(parts.password)
    database = parts.path.lstrip("/")
    if database:
        found["database"] = unquote(database)
    return found


def load_pool_settings(environ: Mapping[str, str] | None = None) -> PoolSettings:
    env = os.environ if environ is None else environ

    values: dict[str, object] = {
        "host": _env_str(env, "PGHOST", "localhost"),
        "port": _env_int(env, "PGPORT", 5432),
        "user": _env_str(env, "PGUSER", "postgres"),
        "password": (env.get("PGPASSWORD") or None),
        "database": _env_str(env, "PGDATABASE", "postgres"),
    }

    url = (env.get("DATABASE_URL") or "").strip()
    if url:
        values.update(_database_url_parts(url))

    return PoolSettings(
        **values,
        min_size=_env_int(env, "DB_POOL_MIN_SIZE", 1),
        max_size=_env_int(env, "DB_POOL_MAX_SIZE", 10),
        acquire_timeout=_env_float(env, "DB_POOL_ACQUIRE_TIMEOUT", 10.0),
        policy=_env_str(env, "DB_POOL_POLICY", POLICY_WAIT).lower(),
        connect_timeout=_env_float(env, "DB_CONNECT_TIMEOUT", 10.0),
        command_timeout=_env_float(env, "DB_COMMAND_TIMEOUT", 30.0),
    )


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """
    Build `Settings` from environment variables (defaults to `os.environ`).

    Malformed numbers fall back to their defaults; structurally invalid pool
    settings raise `ConfigError`.
    """
    env = os.environ if environ is None else environ
    return Settings(
        pool=load_pool_settings(env),
        host=_env_str(env, "HOST", "0.0.0.0"),
        port=_env_int(env, "PORT", 3000),
        log_level=_env_str(env, "LOG_LEVEL", "INFO").upper(),
    )
