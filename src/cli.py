"""Drift monitor command-line interface implemented with Typer."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import typer

from config import settings
from drift.audit import AuditReport
from drift.audit_store import SqlAuditSink
from drift.classifier import classify_change
from drift.config_schema import EngineSetup, load_engine_config
from drift.errors import ConfigurationError, DriftEngineError
from drift.events import EventBus, LoggingEventSink
from drift.monitor import CycleResult, DiscoveredSource, DriftMonitor
from drift.transports import ChannelTransport, LoggingTransport
from drift.types import EMAIL, SLACK, TEAMS, ChangeKind
from services.database import check_connection, create_session_factory
from services.email_relay import EmailRelayTransport
from services.webhooks import SlackWebhookTransport, TeamsWebhookTransport
from structured_logging import configure_logging

logger = logging.getLogger(__name__)

CONFIG_ERROR_EXIT_CODE = 2
INPUT_ERROR_EXIT_CODE = 3


@dataclass(frozen=True)
class CliConfig:
    """Global CLI options shared by every command."""

    config_path: str
    as_json: bool


app = typer.Typer(no_args_is_help=True, help="Schema drift monitor")


def _require_config(ctx: typer.Context) -> CliConfig:
    """Return required CLI config from Typer context."""
    config = ctx.obj
    if not isinstance(config, CliConfig):
        raise RuntimeError("CLI configuration not initialized")
    return config


def _emit(data: dict[str, Any], as_json: bool, human: str) -> None:
    """Render command output in the requested format."""
    if as_json:
        typer.echo(json.dumps(data, sort_keys=True, separators=(",", ":")))
        return
    typer.echo(human)


def _fail(message: str, as_json: bool, code: int) -> typer.Exit:
    """Print an error to stderr and return the exit to raise."""
    if as_json:
        typer.echo(json.dumps({"error": message}), err=True)
    else:
        typer.echo(f"error: {message}", err=True)
    return typer.Exit(code=code)


def _load_setup(cfg: CliConfig) -> EngineSetup:
    try:
        return load_engine_config(cfg.config_path)
    except ConfigurationError as exc:
        raise _fail(str(exc), cfg.as_json, CONFIG_ERROR_EXIT_CODE) from exc


def load_discovery(path: Path) -> list[DiscoveredSource]:
    """Read discovered sources from a JSON list or a ``{"sources": [...]}`` document."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("sources")
    if not isinstance(data, list):
        raise ValueError("Discovery file must hold a list of sources.")
    return [DiscoveredSource.from_mapping(item) for item in data]


def build_transports(dry_run: bool) -> dict[str, ChannelTransport]:
    """Return one transport per channel; dry runs only log."""
    if dry_run:
        return {channel: LoggingTransport(channel) for channel in (EMAIL, TEAMS, SLACK)}
    return {
        EMAIL: EmailRelayTransport(),
        TEAMS: TeamsWebhookTransport(),
        SLACK: SlackWebhookTransport(),
    }


def _cycle_document(result: CycleResult, report: AuditReport) -> dict[str, Any]:
    return {
        "driftEvents": [event.event_id for event in result.drift_events],
        "unchanged": result.unchanged,
        "skipped": result.skipped,
        "blocked": result.blocked,
        "notifications": result.notifications,
        "escalationsScheduled": len(result.escalations),
        "catalogSummaries": result.catalog_summaries,
        "summary": report.to_document()["summary"],
    }


def _render_cycle(result: CycleResult) -> str:
    lines = [
        f"Drift events: {len(result.drift_events)}",
        f"Notifications: {result.notifications}",
        f"Escalations scheduled: {len(result.escalations)}",
    ]
    for summary in result.catalog_summaries:
        lines.append(
            f"- {summary['sourceIdentifier']} ({summary['severity']}): "
            f"{', '.join(summary['affectedColumns'])}"
        )
    for source, reason in sorted(result.skipped.items()):
        lines.append(f"skipped {source}: {reason}")
    for source, reason in sorted(result.blocked.items()):
        lines.append(f"blocked {source}: {reason}")
    return "\n".join(lines)


async def _run_cycle(
    monitor: DriftMonitor, sources: list[DiscoveredSource]
) -> tuple[CycleResult, AuditReport]:
    """Run one cycle; pending escalations do not outlive the process."""
    try:
        result = await monitor.run_cycle(sources)
        return result, monitor.build_report()
    finally:
        await monitor.shutdown()


@app.callback()
def main(
    ctx: typer.Context,
    config_path: str = typer.Option(
        settings.engine.config_path,
        "--config",
        envvar="DRIFT_ENGINE_CONFIG",
        help="Engine configuration YAML",
    ),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON output"),
    log_level: str = typer.Option(settings.log_level, help="Log level"),
) -> None:
    """Store global options and configure logging."""
    configure_logging(level=log_level, json_output=settings.log_json, stream=sys.stderr)
    ctx.obj = CliConfig(config_path=config_path, as_json=as_json)


@app.command("run")
def run_command(
    ctx: typer.Context,
    discovery: Path = typer.Argument(..., exists=True, dir_okay=False, help="Discovery JSON"),
    report_out: Path | None = typer.Option(None, help="Write the audit report JSON here"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log notifications instead of sending"),
    database_url: str | None = typer.Option(
        None,
        envvar="DATABASE_URL",
        help="Also persist the audit trail to this database (default: database.url)",
    ),
) -> None:
    """Run one discovery cycle over the sources in DISCOVERY."""
    cfg = _require_config(ctx)
    setup = _load_setup(cfg)
    try:
        sources = load_discovery(discovery)
    except ValueError as exc:
        raise _fail(f"Invalid discovery file: {exc}", cfg.as_json, INPUT_ERROR_EXIT_CODE) from exc

    events = EventBus()
    events.subscribe(LoggingEventSink())
    sql_sink: SqlAuditSink | None = None
    database_url = database_url or settings.database.url
    if database_url:
        sql_sink = SqlAuditSink(create_session_factory(database_url))
        events.subscribe(sql_sink)
    monitor = DriftMonitor.from_setup(setup, build_transports(dry_run), events=events)

    try:
        result, report = asyncio.run(_run_cycle(monitor, sources))
    except DriftEngineError as exc:
        raise _fail(str(exc), cfg.as_json, CONFIG_ERROR_EXIT_CODE) from exc
    finally:
        if sql_sink is not None:
            sql_sink.close()

    if report_out is not None:
        report_out.write_text(report.to_json(), encoding="utf-8")
        logger.info("Audit report written to %s", report_out)
    _emit(_cycle_document(result, report), cfg.as_json, _render_cycle(result))


@app.command("validate-config")
def validate_config_command(
    ctx: typer.Context,
    database_url: str | None = typer.Option(
        None,
        envvar="DATABASE_URL",
        help="Also check this audit database is reachable (default: database.url)",
    ),
) -> None:
    """Load the engine configuration and report what it defines."""
    cfg = _require_config(ctx)
    setup = _load_setup(cfg)
    database_url = database_url or settings.database.url
    if database_url:
        factory = create_session_factory(database_url, create_tables=False)
        if not check_connection(factory):
            raise _fail("Audit database is unreachable", cfg.as_json, CONFIG_ERROR_EXIT_CODE)
    data = {
        "valid": True,
        "databaseChecked": bool(database_url),
        "baselines": {baseline.source_type: baseline.version for baseline in setup.baselines},
        "systems": sorted(system.name for system in setup.systems),
        "sourceDependencies": {
            source_type: list(names) for source_type, names in setup.source_dependencies.items()
        },
    }
    human = "\n".join(
        [f"Configuration OK: {cfg.config_path}"]
        + [f"baseline {name} v{version}" for name, version in sorted(data["baselines"].items())]
        + [f"system {name}" for name in data["systems"]]
    )
    _emit(data, cfg.as_json, human)


@app.command("classify")
def classify_command(
    ctx: typer.Context,
    column: str = typer.Argument(..., help="Column name"),
    kind: ChangeKind = typer.Option(ChangeKind.ADDED, case_sensitive=False, help="Change kind"),
    source_type: str = typer.Option("claims", help="Source type for the justification text"),
) -> None:
    """Show how a column addition or removal would be classified."""
    cfg = _require_config(ctx)
    classification = classify_change(kind, column, source_type)
    data = {
        "column": column,
        "kind": kind.value,
        "severity": classification.severity.name,
        "impacts": list(classification.impacts),
        "recommendation": classification.recommendation,
        "businessJustification": classification.business_justification,
    }
    human = "\n".join(
        [
            f"{kind.value} {column}: {classification.severity.name}",
            classification.recommendation,
        ]
        + [f"- {impact}" for impact in classification.impacts]
    )
    _emit(data, cfg.as_json, human)


if __name__ == "__main__":
    app()
