from __future__ import annotations

from sqlalchemy import text

from campusmatch.db.engine import build_engine, ping_db
from campusmatch.db.init_db import ensure_db, init_db


def test_init_db_creates_tables(tmp_path) -> None:
    db_path = tmp_path / "nested" / "campusmatch.duckdb"
    engine = build_engine(f"duckdb:///{db_path}")

    init_db(engine)
    ensure_db(engine)

    with engine.connect() as conn:
        rows = conn.execute(
            text(
                """
                SELECT table_name
                FROM information_schema.tables
                WHERE table_schema = 'main'
                """
            )
        ).fetchall()

    table_names = {r[0] for r in rows}
    assert {"items", "ai_matches", "ai_configurations", "ai_decision_versions", "claims"} <= table_names
    engine.dispose()


def test_ping_db_inmemory_duckdb() -> None:
    engine = build_engine("duckdb:///:memory:")
    result = ping_db(engine)
    assert result.ok is True
