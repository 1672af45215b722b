"""CLI command for matching and claims analytics."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy.orm import sessionmaker

from campusmatch.db.engine import build_engine
from campusmatch.db.init_db import ensure_db
from campusmatch.services.analytics import AnalyticsAggregator, plot_score_histogram

console = Console()


def analytics_cmd(
    start: Optional[datetime] = typer.Option(None, help="Window start (UTC)."),
    end: Optional[datetime] = typer.Option(None, help="Window end (UTC)."),
    out: Optional[Path] = typer.Option(None, help="Write the full JSON report here."),
    plot: Optional[Path] = typer.Option(None, help="Write a score histogram PNG here."),
) -> None:
    """Summarize match outcomes, threshold effectiveness and claim fraud signals."""
    engine = build_engine()
    ensure_db(engine)
    SessionLocal = sessionmaker(bind=engine)

    with SessionLocal() as session:
        agg = AnalyticsAggregator(session)
        matching = agg.matching_report(start, end)
        claims = agg.claims_report(start, end)

    table = Table(title="Matching")
    table.add_column("metric", style="cyan")
    table.add_column("value", style="magenta")
    table.add_row("matches", str(matching["total_matches"]))
    for status, n in matching["status_counts"].items():
        table.add_row(f"  {status}", str(n))
    table.add_row("acceptance rate", f"{matching['acceptance_rate']:.2%}")
    table.add_row("override rate", f"{matching['override_rate']:.2%}")
    p95 = matching["latency"]["p95_ms"]
    table.add_row("p95 latency", "-" if p95 is None else f"{p95:.1f} ms")
    table.add_row("suspicious claims", str(claims["suspicious_claims"]))
    console.print(table)

    for rec in matching["threshold_effectiveness"]["recommendations"]:
        console.print(f"• {rec}")

    if out:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps({"matching": matching, "claims": claims}, indent=2))
        typer.echo(f"✅ Report written to {out}")
    if plot:
        plot_score_histogram(matching["score_histogram"], plot)
        typer.echo(f"✅ Histogram written to {plot}")
