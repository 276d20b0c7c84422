"""CLI interface for liftlog snapshot tooling."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import click

from .aggregation import weekly_rollup
from .analytics_export import build_analytics_export
from .calculations import ONE_REP_MAX_FORMULAS
from .config import Config
from .logging import setup_logging
from .snapshot import latest_snapshots, parse_snapshot, workout_from_snapshot
from .snapshot_migrations import migrate_snapshot
from .streaks import daily_streak, training_streaks

logger = logging.getLogger(__name__)


def _load_documents(paths: tuple[Path, ...]) -> list[dict[str, Any]]:
    """Each file holds one snapshot document or a JSON array of them."""
    documents: list[dict[str, Any]] = []
    for path in paths:
        with path.open() as f:
            data = json.load(f)
        if isinstance(data, list):
            documents.extend(data)
        else:
            documents.append(data)
    return documents


def _write_json(data: Any, output: Path | None) -> None:
    text = json.dumps(data, indent=2, default=str)
    if output:
        output.write_text(text + "\n")
        click.echo(f"Wrote {output}")
    else:
        click.echo(text)


def _parse_now(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@click.group()
@click.pass_context
def main(ctx: click.Context):
    """Liftlog workout snapshot and analytics tools."""
    try:
        config = Config.from_env()
    except ValueError as exc:
        click.echo(f"Error: invalid configuration: {exc}", err=True)
        sys.exit(1)
    setup_logging(config.log_format)
    ctx.obj = config


@main.command("export-analytics")
@click.argument("snapshots", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Write the export to a JSON file.")
@click.option(
    "--formula",
    type=click.Choice(sorted(ONE_REP_MAX_FORMULAS)),
    default=None,
    help="One-rep-max formula (defaults to LIFTLOG_ONE_RM_FORMULA).",
)
@click.option("--now", "now_value", type=str, help="Reference time (ISO-8601) for windowed metrics.")
@click.pass_obj
def export_analytics(
    config: Config,
    snapshots: tuple[Path, ...],
    output: Path | None,
    formula: str | None,
    now_value: str | None,
):
    """Build the analytics export from stored snapshot documents."""
    try:
        export = build_analytics_export(
            _load_documents(snapshots),
            now=_parse_now(now_value),
            formula=formula or config.one_rm_formula,
            balance_weeks=config.balance_weeks,
            timezone_name=config.timezone,
        )
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    _write_json(export, output)


@main.command()
@click.argument("snapshot", type=click.Path(exists=True, path_type=Path))
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Write the migrated document(s) to a file.")
def migrate(snapshot: Path, output: Path | None):
    """Upgrade snapshot document(s) to the current schema version."""
    try:
        migrated = [migrate_snapshot(doc) for doc in _load_documents((snapshot,))]
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    _write_json(migrated[0] if len(migrated) == 1 else migrated, output)


@main.command()
@click.argument("snapshots", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("--target", type=int, default=None, help="Workouts per week (defaults to LIFTLOG_WEEKLY_TARGET).")
@click.option("--now", "now_value", type=str, help="Reference time (ISO-8601).")
@click.pass_obj
def streak(config: Config, snapshots: tuple[Path, ...], target: int | None, now_value: str | None):
    """Report weekly and daily training streaks."""
    weekly_target = target if target is not None else config.weekly_target
    if weekly_target <= 0:
        click.echo("Error: --target must be positive.", err=True)
        sys.exit(1)
    try:
        parsed = latest_snapshots(parse_snapshot(doc) for doc in _load_documents(snapshots))
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    now = _parse_now(now_value)
    dates = [s.metadata.started_at for s in parsed if not s.metadata.is_deleted]
    weekly = training_streaks(dates, now, weekly_target, timezone_name=config.timezone)
    daily = daily_streak(dates, now, timezone_name=config.timezone)

    click.echo(f"Weekly streak: {weekly['current_streak']} (longest {weekly['longest_streak']})")
    click.echo(f"  Target: {weekly_target}x/week, this week: {weekly['workouts_this_week']}")
    click.echo(f"  On track: {'yes' if weekly['is_on_track'] else 'no'}")
    click.echo(f"Daily streak: {daily['current_streak']} (longest {daily['longest_streak']})")


@main.command()
@click.argument("snapshots", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Write the rollup to a file.")
@click.pass_obj
def weekly(config: Config, snapshots: tuple[Path, ...], output: Path | None):
    """Per-week volume, set and workout counts with RPE-based fatigue."""
    try:
        parsed = latest_snapshots(parse_snapshot(doc) for doc in _load_documents(snapshots))
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    workouts = [workout_from_snapshot(s) for s in parsed if not s.metadata.is_deleted]
    rollup = weekly_rollup(
        workouts,
        timezone_name=config.timezone,
        rpe_coverage_threshold=config.rpe_coverage_threshold,
    )
    _write_json(rollup, output)
