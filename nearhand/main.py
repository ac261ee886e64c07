"""Nearhand: local help marketplace."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException
from slowapi.middleware import SlowAPIMiddleware

from nearhand.api.router import api_router
from nearhand.background import background_loop
from nearhand.config import settings
from nearhand.content import render_response
from nearhand.database import close_db, get_session_factory, init_db
from nearhand.rate_limit import limiter

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("nearhand")


@asynccontextmanager
async def lifespan(app: FastAPI):
    db_url = settings.database_url
    if not db_url.startswith("sqlite"):
        db_url = f"sqlite+aiosqlite:///{db_url}"
    await init_db(db_url)
    safe_url = re.sub(r"://[^:]+:[^@]+@", "://***:***@", db_url)
    logger.info("Database connected: %s", safe_url)

    bg_task = None
    if settings.expire_poll_seconds > 0:
        bg_task = asyncio.create_task(background_loop(get_session_factory()))

    yield

    if bg_task is not None:
        bg_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await bg_task
    await close_db()
    logger.info("Database closed")


app = FastAPI(
    title="Nearhand",
    description="Post local tasks, apply to help, get matched by distance",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.include_router(api_router)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return render_response(
        request,
        {"error": exc.detail},
        status_code=exc.status_code,
    )


@app.get("/health")
async def health():
    return {"status": "ok"}


def main():
    import uvicorn

    uvicorn.run("nearhand.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
