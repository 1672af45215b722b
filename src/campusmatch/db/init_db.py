from __future__ import annotations

from sqlalchemy.engine import Engine

from campusmatch.db.schema import Base


def _run_ddl(engine: Engine, drop: bool) -> None:
    # DuckDB handles DDL poorly inside a managed SQLAlchemy transaction; use a plain
    # connection and commit through the DBAPI
    conn = engine.connect()
    try:
        if drop:
            Base.metadata.drop_all(bind=conn)
        Base.metadata.create_all(bind=conn, checkfirst=True)
        raw = conn.connection
        if hasattr(raw, "commit"):
            raw.commit()
    finally:
        conn.close()


def init_db(engine: Engine) -> None:
    """Drop and recreate every campusmatch table."""
    _run_ddl(engine, drop=True)


def ensure_db(engine: Engine) -> None:
    """Create missing tables; items, matches, claims and config history are left alone."""
    _run_ddl(engine, drop=False)
