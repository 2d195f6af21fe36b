# services/config.py
from __future__ import annotations
import os

# ------------------------------------------------------------------------------
# Helper: get env var with fallback
# ------------------------------------------------------------------------------
def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return v if v is not None and v != "" else default

# ------------------------------------------------------------------------------
# Database
# ------------------------------------------------------------------------------
DATABASE_URL: str = _env("DATABASE_URL", "sqlite://./db.sqlite3")
# Tortoise connection name handed to the billing / retention components
DB_CONNECTION: str = _env("DB_CONNECTION", "default")

# ------------------------------------------------------------------------------
# Identity (tokens are issued by the external identity provider)
# ------------------------------------------------------------------------------
JWT_SECRET: str = _env("JWT_SECRET", "change-me")
JWT_ALGORITHM: str = _env("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE: str | None = _env("JWT_AUDIENCE") or None

# ------------------------------------------------------------------------------
# Retention sweep
# ------------------------------------------------------------------------------
# 0 disables the scheduled sweep; the on-demand endpoint keeps working
RETENTION_SWEEP_SECONDS: int = int(_env("RETENTION_SWEEP_SECONDS", str(24 * 3600)))
RETENTION_CONCURRENCY: int = int(_env("RETENTION_CONCURRENCY", "4"))
RETENTION_DELETE_CHUNK: int = int(_env("RETENTION_DELETE_CHUNK", "500"))

# ------------------------------------------------------------------------------
# API
# ------------------------------------------------------------------------------
DEFAULT_PAGE_SIZE: int = int(_env("DEFAULT_PAGE_SIZE", "20"))
MAX_PAGE_SIZE: int = int(_env("MAX_PAGE_SIZE", "100"))

CORS_ORIGINS: list[str] = [
    o.strip()
    for o in _env("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if o.strip()
]

LOG_LEVEL: str = _env("LOG_LEVEL", "INFO").upper()
