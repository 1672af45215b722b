"""Process-wide session factory for the API."""

from __future__ import annotations

from functools import lru_cache

from sqlalchemy.orm import sessionmaker

from campusmatch.db.engine import build_engine
from campusmatch.db.init_db import ensure_db


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    """Built on first request; missing tables are created once, existing data is kept."""
    engine = build_engine()
    ensure_db(engine)
    return sessionmaker(bind=engine)
