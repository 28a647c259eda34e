from __future__ import annotations

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request

from core import db
from core.config import Settings, load_settings
from core.errors import register_exception_handlers
from core.logging import configure_logging
from posts import router as posts_router
from users import router as users_router


def create_app(
    settings: Settings | None = None,
    *,
    pool: db.ConnectionPool | None = None,
) -> FastAPI:
    """
    Build the API around one explicitly constructed connection pool.

    Serve with the `run()` entry point, which also sets up logging.
    """
    settings = settings or load_settings()
    pool = pool or db.ConnectionPool(settings.pool)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await pool.open()
        try:
            yield
        finally:
            await pool.close()

    app = FastAPI(title="user-posts-api", lifespan=lifespan)
    app.state.settings = settings
    app.state.pool = pool

    register_exception_handlers(app)

    app.include_router(users_router.router, tags=["users"])
    app.include_router(posts_router.router, tags=["posts"])

    @app.get("/health")
    def health(request: Request) -> dict:
        return {"status": "ok", "pool": request.app.state.pool.stats()}

    return app


def run() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
