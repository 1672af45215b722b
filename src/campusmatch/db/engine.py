# src/campusmatch/db/engine.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from campusmatch.config.settings import settings

DUCKDB_PREFIX = "duckdb:///"


@dataclass(frozen=True)
class DBPingResult:
    ok: bool
    detail: str


def resolve_db_url(db_url: Optional[str] = None) -> str:
    """Explicit argument, then DATABASE_URL, then CAMPUSMATCH_DB_URL / the default file."""
    return db_url or os.getenv("DATABASE_URL") or settings.db_url


def _duckdb_file(url: str) -> Optional[Path]:
    if not url.startswith(DUCKDB_PREFIX):
        return None
    path = url[len(DUCKDB_PREFIX):]
    if not path or path.startswith(":memory:"):
        return None
    return Path(path)


def build_engine(db_url: Optional[str] = None) -> Engine:
    """
    Engine for the match store.

    File-backed DuckDB URLs get their parent directory created, since DuckDB will
    not create it. In-memory URLs are per connection and therefore per thread.
    """
    url = resolve_db_url(db_url)
    path = _duckdb_file(url)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, future=True)


def ping_db(engine: Engine) -> DBPingResult:
    """Connectivity check for /health; reports failures instead of raising."""
    try:
        with engine.connect() as conn:
            conn.execute(text("select 1")).scalar_one()
        return DBPingResult(ok=True, detail="ok")
    except Exception as e:
        return DBPingResult(ok=False, detail=f"{type(e).__name__}: {e}")
