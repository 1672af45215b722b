from __future__ import annotations

from datetime import datetime
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy.orm import sessionmaker

from campusmatch.cli.report import analytics_cmd
from campusmatch.db.engine import build_engine
from campusmatch.db.init_db import ensure_db, init_db
from campusmatch.errors import CampusMatchError
from campusmatch.logging_setup import configure_logging
from campusmatch.models.domain import Thresholds, Weights
from campusmatch.repos.config_repo import ConfigurationRepository
from campusmatch.repos.item_repo import ItemRepository
from campusmatch.services.claims_resolver import ClaimsResolver
from campusmatch.services.embedding_client import get_embedding_client
from campusmatch.services.feature_builder import FeatureVectorBuilder
from campusmatch.services.image_similarity import BoundedImageScorer, get_image_client
from campusmatch.services.matching import MatchDecisionEngine, batch_process
from campusmatch.services.text_similarity import TextSimilarityScorer

app = typer.Typer(help="campusmatch CLI (matching, decisions, claims, analytics).")
console = Console()

app.command("analytics")(analytics_cmd)


@app.callback()
def _setup(log_level: Optional[str] = typer.Option(None, help="Override CAMPUSMATCH_LOG_LEVEL.")) -> None:
    configure_logging(log_level)


def _session_factory() -> sessionmaker:
    engine = build_engine()
    ensure_db(engine)
    return sessionmaker(bind=engine)


def _builder() -> FeatureVectorBuilder:
    return FeatureVectorBuilder(
        TextSimilarityScorer(embedding_client=get_embedding_client()),
        BoundedImageScorer(get_image_client()),
    )


def _fail(e: CampusMatchError) -> None:
    console.print(f"[red]error:[/red] {e}")
    raise typer.Exit(code=1)


@app.command("init-db")
def init_db_cmd() -> None:
    """Drop and recreate every table."""
    init_db(build_engine())
    typer.echo("✅ Database initialized and reachable.")


@app.command("show-config")
def show_config_cmd(all_versions: bool = typer.Option(False, "--all", help="List every version.")) -> None:
    with _session_factory()() as session:
        repo = ConfigurationRepository(session)
        snaps = repo.list_versions() if all_versions else [repo.active()]

    table = Table(title="AI configuration")
    for col in ("version", "enabled", "autoApprove", "partialMatch", "text", "image", "location", "time", "updated_by"):
        table.add_column(col)
    for s in snaps:
        w = s.weights
        table.add_row(
            str(s.version) + (" (fallback)" if s.is_fallback else ""),
            "yes" if s.enabled else "",
            f"{s.thresholds.auto_approve:g}",
            f"{s.thresholds.partial_match:g}",
            f"{w.text:g}", f"{w.image:g}", f"{w.location:g}", f"{w.time:g}",
            s.updated_by or "",
        )
    console.print(table)


@app.command("set-config")
def set_config_cmd(
    auto_approve: float = typer.Option(..., help="Full-match threshold (percent)."),
    partial_match: float = typer.Option(..., help="Partial-match floor (percent)."),
    text: float = typer.Option(30.0),
    image: float = typer.Option(35.0),
    location: float = typer.Option(20.0),
    time: float = typer.Option(15.0),
    actor: str = typer.Option(..., help="Admin id recorded as updated_by."),
) -> None:
    """Append and enable a new configuration version."""
    with _session_factory()() as session:
        try:
            snap = ConfigurationRepository(session).create_configuration(
                Thresholds(auto_approve=auto_approve, partial_match=partial_match),
                Weights(text=text, image=image, location=location, time=time),
                updated_by=actor,
            )
        except CampusMatchError as e:
            _fail(e)
    typer.echo(f"✅ Configuration version {snap.version} enabled.")


@app.command("add-item")
def add_item_cmd(
    submission_type: str = typer.Argument(..., help="lost or found"),
    description: str = typer.Argument(...),
    category: str = typer.Option(""),
    color: Optional[str] = typer.Option(None),
    material: Optional[str] = typer.Option(None),
    zone: Optional[str] = typer.Option(None),
    lat: Optional[float] = typer.Option(None),
    lon: Optional[float] = typer.Option(None),
    when: Optional[datetime] = typer.Option(None, help="When it was lost/found (UTC)."),
    submitter: Optional[str] = typer.Option(None),
    objects: List[str] = typer.Option([], "--object", help="Detected object label; repeatable."),
) -> None:
    """Insert an item report (local testing; production items come from the main app)."""
    fields = dict(color=color, material=material, zone_id=zone, latitude=lat, longitude=lon, submitter_id=submitter)
    if when is not None:
        fields["lost_or_found_at"] = when
    with _session_factory()() as session:
        try:
            row = ItemRepository(session).add(
                submission_type, description, category, detected_objects=objects or None, **fields
            )
        except CampusMatchError as e:
            _fail(e)
        typer.echo(row.item_id)


@app.command("match-item")
def match_item_cmd(item_id: str) -> None:
    """Score an item against the candidate pool and persist matches."""
    with _session_factory()() as session:
        try:
            run = MatchDecisionEngine(session, _builder()).match_item(item_id)
        except CampusMatchError as e:
            _fail(e)
    typer.echo(
        f"✅ evaluated={run.evaluated} created={len(run.created)} updated={len(run.updated)} "
        f"config=v{run.config_version}"
    )
    if run.degraded:
        console.print(f"[yellow]degraded signals:[/yellow] {', '.join(run.degraded)}")


@app.command("quick-match")
def quick_match_cmd(
    item_id: str,
    limit: int = typer.Option(10),
    keywords: bool = typer.Option(False, "--keywords", help="Keyword overlap only."),
) -> None:
    """Show ranked candidates without persisting anything."""
    with _session_factory()() as session:
        engine = MatchDecisionEngine(session, _builder())
        try:
            if keywords:
                rows = [(other, score, "", "") for other, score in engine.suggest(item_id, limit)]
            else:
                rows = [(q.item_id, q.score, q.tier, q.explanation) for q in engine.quick_match(item_id, limit)]
        except CampusMatchError as e:
            _fail(e)

    table = Table(title=f"Candidates for {item_id}")
    table.add_column("item", style="cyan")
    table.add_column("score", style="magenta")
    table.add_column("tier")
    table.add_column("why", style="green")
    for other, score, tier, why in rows:
        table.add_row(other, f"{score:.3f}", tier, why)
    console.print(table)


@app.command("decide")
def decide_cmd(
    match_id: str,
    decision: str = typer.Argument(..., help="accepted or rejected"),
    actor: str = typer.Option(...),
    reason: str = typer.Option(...),
) -> None:
    with _session_factory()() as session:
        try:
            row = MatchDecisionEngine(session, _builder()).decide(match_id, decision, actor, reason)
        except CampusMatchError as e:
            _fail(e)
        typer.echo(f"✅ match {row.match_id} is now {row.status}")


@app.command("rollback")
def rollback_cmd(
    match_id: str,
    actor: str = typer.Option(...),
    reason: str = typer.Option(...),
    version_id: Optional[str] = typer.Option(None, help="Decision version to restore (default latest)."),
) -> None:
    with _session_factory()() as session:
        try:
            row = MatchDecisionEngine(session, _builder()).rollback(match_id, actor, reason, version_id)
        except CampusMatchError as e:
            _fail(e)
        typer.echo(f"✅ match {row.match_id} restored to {row.status}")


@app.command("rescore")
def rescore_cmd(
    match_id: Optional[str] = typer.Argument(None, help="Omit to re-score every match."),
    actor: str = typer.Option("system"),
) -> None:
    """Recompute matches under the enabled configuration."""
    with _session_factory()() as session:
        engine = MatchDecisionEngine(session, _builder())
        try:
            if match_id:
                _, changed = engine.rescore_match(match_id, actor)
                counts = {"changed": int(changed), "unchanged": int(not changed)}
            else:
                counts = engine.rescore_all(actor)
        except CampusMatchError as e:
            _fail(e)
    typer.echo(f"✅ changed={counts['changed']} unchanged={counts['unchanged']}")


@app.command("batch-match")
def batch_match_cmd(
    limit: int = typer.Option(100),
    workers: int = typer.Option(4),
) -> None:
    """Match every submitted item that has not been checked yet."""
    factory = _session_factory()
    builder = _builder()
    result = batch_process(factory, lambda s: MatchDecisionEngine(s, builder, workers=1), limit=limit, workers=workers)
    typer.echo(
        f"✅ processed={len(result.processed)} skipped={len(result.skipped)} "
        f"failed={len(result.failed)} matches_created={result.matches_created}"
    )
    for item_id, err in result.failed.items():
        console.print(f"[red]{item_id}[/red]: {err}")


@app.command("resolve-claims")
def resolve_claims_cmd(item_id: str, actor: str = typer.Option("system")) -> None:
    """Re-rank the open claims on a found item."""
    with _session_factory()() as session:
        try:
            result = ClaimsResolver(session).resolve(item_id, actor)
        except CampusMatchError as e:
            _fail(e)

    table = Table(title=f"Claims on {item_id}" + (" (conflict)" if result.conflict else ""))
    for col in ("rank", "claim", "combined", "proof", "match", "status", "leading", "flags"):
        table.add_column(col)
    for a in result.assessments:
        table.add_row(
            str(a.rank), a.claim_id, f"{a.combined:.3f}", f"{a.proof_score:.3f}", f"{a.match_score:.3f}",
            a.status, "★" if a.is_leading else "", ", ".join(a.reasons),
        )
    console.print(table)
