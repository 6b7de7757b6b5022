"""Expose the expense management FastAPI app and enforce local development CORS defaults."""

import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Iterable

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .config import get_settings
from .errors import ExpenseAppError
from .migrations import run_database_migrations
from .routers import (
    categories_router,
    chat_router,
    expenses_router,
    statuses_router,
    users_router,
)

ALLOWED_ORIGINS_ENV = "BACKEND_ALLOWED_ORIGINS"
LOCALHOST_ORIGIN_REGEX = r"https?://(localhost|127\.0\.0\.1|0\.0\.0\.0)(:\d+)?$"

DEFAULT_ALLOWED_ORIGINS = (
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8000",
    "http://127.0.0.1:8000",
)


def _normalize_origin(origin: str) -> str | None:
    stripped = origin.strip()
    if not stripped:
        return None
    return stripped.rstrip("/")


def _read_allowed_origins(raw_origins: Iterable[str]) -> list[str]:
    normalized = {_normalize_origin(origin) for origin in raw_origins}
    return sorted({origin for origin in normalized if origin})


def _split_raw_origins(raw_value: str) -> list[str]:
    """Split a raw origin string using commas or whitespace as separators."""

    # App Service settings are often pasted space separated.
    return [origin for origin in re.split(r"[\s,]+", raw_value) if origin]


def _load_allowed_origins_from_env() -> list[str]:
    raw_value = os.getenv(ALLOWED_ORIGINS_ENV)
    if not raw_value:
        return []
    return _read_allowed_origins(_split_raw_origins(raw_value))


def _resolve_allowed_origins() -> list[str]:
    """Origins from the environment, or the local development defaults."""

    return _load_allowed_origins_from_env() or _read_allowed_origins(DEFAULT_ALLOWED_ORIGINS)


def configure_logging() -> None:
    level = get_settings().log_level
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def ensure_database_is_ready() -> None:
    """Apply pending database migrations when enabled for this deployment."""

    if not get_settings().run_migrations_on_startup:
        LOGGER.debug("Skipping migrations on startup")
        return
    LOGGER.info("Ensuring database schema is up to date before serving requests")
    try:
        run_database_migrations()
    except (ExpenseAppError, SQLAlchemyError, OSError) as exc:
        # Keep serving so the read endpoints can report the failure.
        LOGGER.error("Database migrations failed: %s", exc, exc_info=exc)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    ensure_database_is_ready()
    yield


app = FastAPI(title="Expense Management API", lifespan=lifespan)

LOGGER = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_resolve_allowed_origins(),
    allow_origin_regex=LOCALHOST_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


app.include_router(expenses_router, prefix="/api/expenses", tags=["expenses"])
app.include_router(categories_router, prefix="/api/categories", tags=["reference"])
app.include_router(users_router, prefix="/api/users", tags=["reference"])
app.include_router(statuses_router, prefix="/api/statuses", tags=["reference"])
app.include_router(chat_router, prefix="/api/chat", tags=["chat"])


@app.get("/", tags=["health"])
def read_root() -> dict[str, str]:
    """Return a simple health check response."""
    return {"status": "ok"}
